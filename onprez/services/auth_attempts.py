from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from onprez.core.clock import utcnow
from onprez.models.auth_attempt import AuthAttempt

RAPID_ATTEMPTS_THRESHOLD = 10
RAPID_ATTEMPTS_WINDOW = timedelta(minutes=5)
MULTIPLE_ACCOUNTS_THRESHOLD = 3
MULTIPLE_ACCOUNTS_WINDOW = timedelta(minutes=10)


@dataclass(frozen=True)
class SuspiciousSignal:
    reason: str
    ip_address: str
    count: int
    window_seconds: int

    def as_details(self) -> dict:
        return {"reason": self.reason, "count": self.count, "window_seconds": self.window_seconds}


def record_login_attempt(
    db: Session,
    *,
    email: str,
    success: bool,
    user_id: Optional[int] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    failure_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AuthAttempt:
    attempt = AuthAttempt(
        user_id=user_id,
        email=email,
        success=success,
        ip_address=ip_address,
        user_agent=user_agent,
        failure_reason=failure_reason,
        created_at=now or utcnow(),
    )
    db.add(attempt)
    db.flush()
    return attempt


def count_recent_failed_attempts(db: Session, email: str, since: datetime) -> int:
    return (
        db.query(func.count(AuthAttempt.id))
        .filter(
            AuthAttempt.email == email,
            AuthAttempt.success.is_(False),
            AuthAttempt.created_at >= since,
        )
        .scalar()
        or 0
    )


def detect_suspicious_activity(
    db: Session, ip_address: Optional[str], now: Optional[datetime] = None
) -> List[SuspiciousSignal]:
    """Advisory signals for one source address; never used to deny access."""
    if not ip_address:
        return []
    now = now or utcnow()
    signals: List[SuspiciousSignal] = []

    rapid = (
        db.query(func.count(AuthAttempt.id))
        .filter(
            AuthAttempt.ip_address == ip_address,
            AuthAttempt.created_at >= now - RAPID_ATTEMPTS_WINDOW,
        )
        .scalar()
        or 0
    )
    if rapid >= RAPID_ATTEMPTS_THRESHOLD:
        signals.append(
            SuspiciousSignal(
                reason="rapid_attempts",
                ip_address=ip_address,
                count=rapid,
                window_seconds=int(RAPID_ATTEMPTS_WINDOW.total_seconds()),
            )
        )

    accounts = (
        db.query(func.count(func.distinct(AuthAttempt.email)))
        .filter(
            AuthAttempt.ip_address == ip_address,
            AuthAttempt.created_at >= now - MULTIPLE_ACCOUNTS_WINDOW,
        )
        .scalar()
        or 0
    )
    if accounts >= MULTIPLE_ACCOUNTS_THRESHOLD:
        signals.append(
            SuspiciousSignal(
                reason="multiple_accounts",
                ip_address=ip_address,
                count=accounts,
                window_seconds=int(MULTIPLE_ACCOUNTS_WINDOW.total_seconds()),
            )
        )
    return signals
