from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from onprez.core.clock import Clock, utcnow
from onprez.core.config import LOGIN_MAX_FAILED_ATTEMPTS, LOGIN_RESET_WINDOW_MINUTES
from onprez.models.account_lockout import AccountLockout
from onprez.services.errors import AccountLocked, ConcurrentModification
from onprez.services.security_logging import log_security_event

logger = logging.getLogger(__name__)

MAX_FAILED_ATTEMPTS = LOGIN_MAX_FAILED_ATTEMPTS
RESET_WINDOW = timedelta(minutes=LOGIN_RESET_WINDOW_MINUTES)

# (prior failures, delay in ms); first match wins
PROGRESSIVE_DELAYS_MS = ((5, 10_000), (4, 5_000), (3, 2_000))

# (max cumulative failures, lock duration); index + 1 is the tier
LOCK_TIERS = (
    (7, timedelta(minutes=30)),
    (10, timedelta(minutes=60)),
    (15, timedelta(hours=2)),
    (None, timedelta(hours=24)),
)


def progressive_delay_ms(failed_attempts: int) -> int:
    """Induced delay before answering an attempt that follows ``failed_attempts`` failures."""
    for threshold, delay in PROGRESSIVE_DELAYS_MS:
        if failed_attempts >= threshold:
            return delay
    return 0


def tier_for_count(failed_attempts: int) -> int:
    """Base lock tier from ``LOCK_TIERS`` for a cumulative failure count.

    This is a floor. A relock after a served lock uses at least the previous
    tier + 1 (see ``AccountSecurityGuard._record``), so count 6 following a
    tier-1 lock gets tier 2 even though the table alone says tier 1.
    """
    for index, (ceiling, _) in enumerate(LOCK_TIERS):
        if ceiling is None or failed_attempts <= ceiling:
            return index + 1
    return len(LOCK_TIERS)


def lock_duration_for(failed_attempts: int) -> timedelta:
    """Lock duration for a first lock at ``failed_attempts``; relocks escalate past it."""
    return LOCK_TIERS[tier_for_count(failed_attempts) - 1][1]


class AuthDecisionKind(str, enum.Enum):
    ALLOWED = "ALLOWED"
    DELAYED = "DELAYED"
    LOCKED = "LOCKED"


@dataclass(frozen=True)
class AuthDecision:
    kind: AuthDecisionKind
    delay_ms: int = 0
    expires_at: Optional[datetime] = None
    failed_attempts: int = 0
    remaining_attempts: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.kind is AuthDecisionKind.ALLOWED

    @property
    def locked(self) -> bool:
        return self.kind is AuthDecisionKind.LOCKED


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    locked_until: Optional[datetime]
    failed_attempts: int
    remaining_attempts: int
    lock_tier: int

    def as_dict(self) -> dict:
        return {
            "locked": self.locked,
            "locked_until": self.locked_until.isoformat() if self.locked_until else None,
            "failed_attempts": self.failed_attempts,
            "remaining_attempts": self.remaining_attempts,
            "lock_tier": self.lock_tier,
        }


class AccountSecurityGuard:
    """Failed-login bookkeeping for one database session.

    Lockout rows are only written through conditional updates keyed on
    ``version``; nothing is kept in process memory. The caller commits.
    """

    def __init__(
        self,
        db: Session,
        *,
        clock: Clock = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        reset_window: timedelta = RESET_WINDOW,
    ) -> None:
        self.db = db
        self._clock = clock
        self._sleep = sleep
        self.max_failed_attempts = max_failed_attempts
        self.reset_window = reset_window

    def get_lockout(self, user_id: int) -> Optional[AccountLockout]:
        return (
            self.db.query(AccountLockout)
            .populate_existing()
            .filter(AccountLockout.user_id == user_id)
            .first()
        )

    @staticmethod
    def _is_locked(lockout: Optional[AccountLockout], now: datetime) -> bool:
        return bool(lockout is not None and lockout.locked_until is not None and lockout.locked_until > now)

    def is_locked(self, user_id: int) -> bool:
        return self._is_locked(self.get_lockout(user_id), self._clock())

    def _window_expired(self, lockout: AccountLockout, now: datetime) -> bool:
        # A served lock counts as activity so the cumulative count survives it
        anchor = lockout.last_failed_at
        if lockout.locked_until is not None and (anchor is None or lockout.locked_until > anchor):
            anchor = lockout.locked_until
        return anchor is None or now - anchor > self.reset_window

    def check_lock(
        self,
        user_id: int,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        lockout = self.get_lockout(user_id)
        if not self._is_locked(lockout, self._clock()):
            return
        log_security_event(
            self.db,
            action="login_blocked",
            severity="warning",
            user_id=user_id,
            details={"locked_until": lockout.locked_until.isoformat(), "failed_attempts": lockout.failed_count},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise AccountLocked(lockout.locked_until)

    def record_auth_result(
        self,
        user_id: int,
        succeeded: bool,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthDecision:
        """Apply one authentication outcome and return what the caller should do.

        Failures wait out the progressive delay through the injected ``sleep``
        before the counter is written. A lost conditional update is retried
        once against a fresh read.
        """
        try:
            return self._record(user_id, succeeded, ip_address, user_agent, apply_delay=True)
        except ConcurrentModification:
            logger.warning("lockout update conflict user_id=%s, retrying", user_id)
            return self._record(user_id, succeeded, ip_address, user_agent, apply_delay=False)

    def _record(
        self,
        user_id: int,
        succeeded: bool,
        ip_address: Optional[str],
        user_agent: Optional[str],
        *,
        apply_delay: bool,
    ) -> AuthDecision:
        now = self._clock()
        lockout = self.get_lockout(user_id)

        if self._is_locked(lockout, now):
            log_security_event(
                self.db,
                action="login_blocked",
                severity="warning",
                user_id=user_id,
                details={"locked_until": lockout.locked_until.isoformat(), "failed_attempts": lockout.failed_count},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return AuthDecision(
                kind=AuthDecisionKind.LOCKED,
                expires_at=lockout.locked_until,
                failed_attempts=lockout.failed_count,
                remaining_attempts=0,
            )

        if succeeded:
            if lockout is not None and (lockout.failed_count or lockout.locked_until or lockout.lock_tier):
                self._write(lockout, now, self._cleared_values())
            return AuthDecision(kind=AuthDecisionKind.ALLOWED, remaining_attempts=self.max_failed_attempts)

        if lockout is None or self._window_expired(lockout, now):
            prior, prior_tier = 0, 0
        else:
            prior, prior_tier = lockout.failed_count or 0, lockout.lock_tier or 0

        delay_ms = progressive_delay_ms(prior)
        if delay_ms and apply_delay:
            self._sleep(delay_ms / 1000)
            now = self._clock()

        failed = prior + 1
        values = {
            AccountLockout.failed_count: failed,
            AccountLockout.last_failed_at: now,
            AccountLockout.first_failed_at: now if prior == 0 else lockout.first_failed_at,
            AccountLockout.locked_until: None,
            AccountLockout.lock_tier: prior_tier,
        }
        locked_until = None
        if failed >= self.max_failed_attempts:
            tier = min(max(tier_for_count(failed), prior_tier + 1), len(LOCK_TIERS))
            locked_until = now + LOCK_TIERS[tier - 1][1]
            values[AccountLockout.locked_until] = locked_until
            values[AccountLockout.lock_tier] = tier

        if lockout is None:
            self._create(user_id, now, values)
        else:
            self._write(lockout, now, values)

        if locked_until is not None:
            log_security_event(
                self.db,
                action="account_locked",
                severity="critical",
                user_id=user_id,
                details={
                    "failed_attempts": failed,
                    "locked_until": locked_until.isoformat(),
                    "lock_tier": values[AccountLockout.lock_tier],
                },
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return AuthDecision(
                kind=AuthDecisionKind.LOCKED,
                delay_ms=delay_ms,
                expires_at=locked_until,
                failed_attempts=failed,
                remaining_attempts=0,
            )

        remaining = max(self.max_failed_attempts - failed, 0)
        log_security_event(
            self.db,
            action="login_failed",
            severity="warning",
            user_id=user_id,
            details={"failed_attempts": failed, "remaining_attempts": remaining, "delay_ms": delay_ms},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return AuthDecision(
            kind=AuthDecisionKind.DELAYED,
            delay_ms=delay_ms,
            failed_attempts=failed,
            remaining_attempts=remaining,
        )

    @staticmethod
    def _cleared_values() -> dict:
        return {
            AccountLockout.failed_count: 0,
            AccountLockout.first_failed_at: None,
            AccountLockout.last_failed_at: None,
            AccountLockout.locked_until: None,
            AccountLockout.lock_tier: 0,
        }

    def _create(self, user_id: int, now: datetime, values: dict) -> AccountLockout:
        lockout = AccountLockout(user_id=user_id, version=1, updated_at=now)
        for column, value in values.items():
            setattr(lockout, column.key, value)
        try:
            with self.db.begin_nested():
                self.db.add(lockout)
        except IntegrityError as exc:
            # Another request created the row first
            raise ConcurrentModification("AccountLockout", user_id) from exc
        return lockout

    def _write(self, lockout: AccountLockout, now: datetime, values: dict) -> None:
        values = dict(values)
        values[AccountLockout.version] = (lockout.version or 0) + 1
        values[AccountLockout.updated_at] = now
        updated = (
            self.db.query(AccountLockout)
            .filter(AccountLockout.id == lockout.id, AccountLockout.version == lockout.version)
            .update(values, synchronize_session=False)
        )
        if not updated:
            raise ConcurrentModification("AccountLockout", lockout.id)
        self.db.refresh(lockout)

    def get_lock_status(self, user_id: int) -> LockStatus:
        now = self._clock()
        lockout = self.get_lockout(user_id)
        if lockout is None:
            return LockStatus(
                locked=False,
                locked_until=None,
                failed_attempts=0,
                remaining_attempts=self.max_failed_attempts,
                lock_tier=0,
            )
        locked = self._is_locked(lockout, now)
        failed = 0 if not locked and self._window_expired(lockout, now) else lockout.failed_count or 0
        return LockStatus(
            locked=locked,
            locked_until=lockout.locked_until if locked else None,
            failed_attempts=failed,
            remaining_attempts=0 if locked else max(self.max_failed_attempts - failed, 0),
            lock_tier=lockout.lock_tier or 0,
        )

    def unlock_account(self, user_id: int, *, unlocked_by: Optional[int] = None) -> bool:
        """Clear the lockout row for ``user_id``. Returns False when there was nothing to clear."""
        lockout = self.get_lockout(user_id)
        if lockout is None or not (lockout.failed_count or lockout.locked_until):
            return False
        was_locked = self._is_locked(lockout, self._clock())
        self._write(lockout, self._clock(), self._cleared_values())
        log_security_event(
            self.db,
            action="account_unlocked",
            severity="info",
            user_id=user_id,
            details={"unlocked_by": unlocked_by, "was_locked": was_locked},
        )
        return True
