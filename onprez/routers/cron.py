from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from onprez.core.config import CRON_SECRET
from onprez.core.database import get_db
from onprez.services.appointment_events import emit_appointment_reminder
from onprez.services.reminders import process_reminders
from onprez.services.security_logging import cleanup_old_security_logs

router = APIRouter(prefix="/api/cron", tags=["cron"])
logger = logging.getLogger(__name__)


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    if not CRON_SECRET:
        logger.warning("CRON_SECRET is not set; cron endpoints are open")
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), CRON_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.api_route("/reminders", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
def run_reminders(db: Session = Depends(get_db)):
    result = process_reminders(db)
    db.commit()
    for appointment, reminder_type in result.notifications:
        db.refresh(appointment)
        emit_appointment_reminder(appointment, reminder_type)
    return {"success": True, **result.as_dict()}


@router.api_route("/security-logs/cleanup", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
def run_security_log_cleanup(db: Session = Depends(get_db)):
    deleted = cleanup_old_security_logs(db)
    db.commit()
    return {"success": True, "deleted": deleted}
