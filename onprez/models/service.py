from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from onprez.core.database import Base


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    price_cents = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    buffer_minutes = Column(Integer, nullable=True)
