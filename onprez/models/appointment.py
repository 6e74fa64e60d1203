from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from onprez.core.database import Base


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)

    # PENDING / CONFIRMED / COMPLETED / CANCELLED / NO_SHOW / RESCHEDULED
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_source = Column(String(20), nullable=True)  # CUSTOMER / BUSINESS / SYSTEM
    cancellation_reason = Column(Text, nullable=True)

    customer_notes = Column(Text, nullable=True)
    business_notes = Column(Text, nullable=True)
    reminder_count = Column(Integer, nullable=False, default=0)

    # Multi-day series: the first appointment is the parent and keeps the pattern
    parent_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, index=True)
    recurrence_pattern = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=True)
    rescheduled_from_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    service = relationship("Service")
    customer = relationship("Customer")
    reminders = relationship("AppointmentReminder", back_populates="appointment", cascade="all, delete-orphan")


class AppointmentReminder(Base):
    __tablename__ = "appointment_reminders"
    __table_args__ = (
        UniqueConstraint("appointment_id", "reminder_type", name="uq_appointment_reminders_type"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    reminder_type = Column(String(10), nullable=False)  # e.g. "24h"
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    appointment = relationship("Appointment", back_populates="reminders")
