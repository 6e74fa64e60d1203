from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint, func

from onprez.core.database import Base


class BusinessHours(Base):
    """Regular weekly opening hours, one row per weekday."""

    __tablename__ = "business_hours"
    __table_args__ = (
        UniqueConstraint("business_id", "day_of_week", name="uq_business_hours_business_day"),
    )

    id = Column(Integer, primary_key=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    # 0 = Sunday ... 6 = Saturday
    day_of_week = Column(Integer, nullable=False)
    # "HH:MM" wall-clock time in the business's timezone
    open_time = Column(String(5), nullable=True)
    close_time = Column(String(5), nullable=True)
    is_closed = Column(Boolean, nullable=False, default=False)


class SpecialDate(Base):
    """Holiday closure or one-off opening hours for a single date."""

    __tablename__ = "special_dates"
    __table_args__ = (
        UniqueConstraint("business_id", "date", name="uq_special_dates_business_date"),
    )

    id = Column(Integer, primary_key=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    name = Column(String(120), nullable=False)
    is_closed = Column(Boolean, nullable=False, default=True)
    open_time = Column(String(5), nullable=True)
    close_time = Column(String(5), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
