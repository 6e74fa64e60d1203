from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer

from onprez.core.database import Base


class AccountLockout(Base):
    __tablename__ = "account_lockouts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)
    failed_count = Column(Integer, nullable=False, default=0)
    first_failed_at = Column(DateTime, nullable=True)
    last_failed_at = Column(DateTime, nullable=True)
    locked_until = Column(DateTime, nullable=True)
    lock_tier = Column(Integer, nullable=False, default=0)
    # Bumped on every write; updates are conditional on the value read
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
