from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from onprez.core.database import get_db
from onprez.deps import get_account_security_guard, get_current_user
from onprez.models.business import Business, BusinessMember
from onprez.models.user import User
from onprez.services.account_security import AccountSecurityGuard
from onprez.services.security_logging import get_user_security_logs, security_log_to_dict

router = APIRouter(prefix="/api/account", tags=["account"])


@router.get("/security-status")
def security_status(
    user: User = Depends(get_current_user),
    guard: AccountSecurityGuard = Depends(get_account_security_guard),
):
    return guard.get_lock_status(user.id).as_dict()


@router.get("/activity")
def security_activity(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"events": [security_log_to_dict(entry) for entry in get_user_security_logs(db, user.id, limit=limit)]}


def _owns_business_of(db: Session, owner_id: int, user_id: int) -> bool:
    owned = select(Business.id).where(Business.owner_id == owner_id)
    member = (
        db.query(BusinessMember.id)
        .filter(BusinessMember.user_id == user_id, BusinessMember.business_id.in_(owned))
        .first()
    )
    return member is not None


@router.post("/unlock/{user_id}")
def unlock_account(
    user_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    guard: AccountSecurityGuard = Depends(get_account_security_guard),
):
    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not _owns_business_of(db, user.id, target.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the business owner can unlock team members")

    unlocked = guard.unlock_account(target.id, unlocked_by=user.id)
    db.commit()
    return {"unlocked": unlocked, "status": guard.get_lock_status(target.id).as_dict()}
