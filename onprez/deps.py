from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from onprez.core.database import get_db
from onprez.core.request_context import set_request_context
from onprez.models.business import Business, BusinessMember
from onprez.models.user import User
from onprez.services.account_security import AccountSecurityGuard
from onprez.services.sessions import SESSION_COOKIE_NAME, decode_session

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    payload = decode_session(token)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")

    try:
        user_id = int(payload["user_id"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    user = db.query(User).filter(User.id == user_id, User.active.is_(True)).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    request.state.user = user
    set_request_context(user_id=str(user.id))
    return user


def _log_access_denied(*, reason: str, user: User, business_id: int | None, request: Request) -> None:
    logger.warning(
        "Access denied (%s): user_id=%s business_id=%s endpoint=%s",
        reason,
        getattr(user, "id", None),
        business_id,
        f"{request.method} {request.url.path}",
    )


def businesses_for_user(db: Session, user_id: int):
    member_business_ids = select(BusinessMember.business_id).where(BusinessMember.user_id == user_id)
    return (
        db.query(Business)
        .filter(or_(Business.owner_id == user_id, Business.id.in_(member_business_ids)))
        .order_by(Business.id.asc())
    )


def get_current_business(
    request: Request,
    business_id: int | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Business:
    """Business the request acts on: ``business_id`` when given, else the user's first business."""
    query = businesses_for_user(db, user.id)
    if business_id is not None:
        business = query.filter(Business.id == business_id).first()
        if business is None:
            _log_access_denied(reason="business_mismatch", user=user, business_id=business_id, request=request)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Business not authorized")
    else:
        business = query.first()
        if business is None:
            _log_access_denied(reason="no_business", user=user, business_id=None, request=request)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User has no business")

    request.state.business_id = business.id
    set_request_context(business_id=str(business.id))
    return business


def get_account_security_guard(db: Session = Depends(get_db)) -> AccountSecurityGuard:
    return AccountSecurityGuard(db)
