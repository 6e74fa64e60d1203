from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, List, Mapping, Optional

from sqlalchemy.orm import Session

from onprez.core.clock import utcnow
from onprez.core.config import SECURITY_LOG_RETENTION_DAYS
from onprez.core.request_context import get_client_ip, get_user_agent
from onprez.models.security_log import SecurityLog

logger = logging.getLogger(__name__)

SEVERITIES = ("info", "warning", "error", "critical")
_LOG_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def log_security_event(
    db: Session,
    *,
    action: str,
    severity: str = "info",
    user_id: Optional[int] = None,
    details: Optional[Mapping[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SecurityLog:
    """Queue a security log row on ``db``; persisted with the caller's commit."""
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown severity: {severity}")
    entry = SecurityLog(
        user_id=user_id,
        action=action,
        severity=severity,
        details_json=json.dumps(details, default=str) if details else None,
        ip_address=ip_address or get_client_ip(),
        user_agent=user_agent or get_user_agent(),
    )
    db.add(entry)
    logger.log(
        _LOG_LEVELS[severity],
        "security event action=%s user_id=%s ip=%s",
        action,
        user_id,
        entry.ip_address,
        extra={"event": action},
    )
    return entry


def security_log_to_dict(entry: SecurityLog) -> dict:
    return {
        "id": entry.id,
        "action": entry.action,
        "severity": entry.severity,
        "details": json.loads(entry.details_json) if entry.details_json else None,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def get_user_security_logs(db: Session, user_id: int, limit: int = 50) -> List[SecurityLog]:
    return (
        db.query(SecurityLog)
        .filter(SecurityLog.user_id == user_id)
        .order_by(SecurityLog.created_at.desc(), SecurityLog.id.desc())
        .limit(limit)
        .all()
    )


def get_security_logs_by_action(db: Session, action: str, limit: int = 100) -> List[SecurityLog]:
    return (
        db.query(SecurityLog)
        .filter(SecurityLog.action == action)
        .order_by(SecurityLog.created_at.desc(), SecurityLog.id.desc())
        .limit(limit)
        .all()
    )


def get_critical_security_events(db: Session, limit: int = 50) -> List[SecurityLog]:
    return (
        db.query(SecurityLog)
        .filter(SecurityLog.severity == "critical")
        .order_by(SecurityLog.created_at.desc(), SecurityLog.id.desc())
        .limit(limit)
        .all()
    )


def cleanup_old_security_logs(
    db: Session,
    days_to_keep: int = SECURITY_LOG_RETENTION_DAYS,
    now: Optional[datetime] = None,
) -> int:
    cutoff = (now or utcnow()) - timedelta(days=days_to_keep)
    deleted = (
        db.query(SecurityLog)
        .filter(SecurityLog.created_at < cutoff, SecurityLog.severity != "critical")
        .delete(synchronize_session=False)
    )
    logger.info("security log cleanup deleted=%s cutoff=%s", deleted, cutoff.isoformat())
    return deleted
