from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from onprez.core.database import Base


class AuthAttempt(Base):
    __tablename__ = "auth_attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    success = Column(Boolean, nullable=False, default=False)
    ip_address = Column(String(64), nullable=True, index=True)
    user_agent = Column(String, nullable=True)
    failure_reason = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
