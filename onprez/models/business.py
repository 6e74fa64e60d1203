from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import relationship

from onprez.core.database import Base


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    # Public page lives at /{handle}
    handle = Column(String(60), unique=True, index=True, nullable=False)
    timezone = Column(String(64), nullable=False, default="Europe/London")
    requires_approval = Column(Boolean, nullable=False, default=False)

    # Per-business overrides; NULL falls back to config defaults
    cancellation_cutoff_hours = Column(Integer, nullable=True)
    min_advance_hours = Column(Integer, nullable=True)
    max_advance_days = Column(Integer, nullable=True)
    # Gap kept free around each appointment unless the service sets its own
    buffer_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    members = relationship("BusinessMember", back_populates="business", cascade="all, delete-orphan")


class BusinessMember(Base):
    __tablename__ = "business_members"
    __table_args__ = (
        UniqueConstraint("business_id", "user_id", name="uq_business_members_business_user"),
    )

    id = Column(Integer, primary_key=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="staff")
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    business = relationship("Business", back_populates="members")
