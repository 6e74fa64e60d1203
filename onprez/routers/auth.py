from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from onprez.core.database import get_db
from onprez.core.request_context import set_request_context
from onprez.deps import businesses_for_user, get_account_security_guard, get_client_ip, get_current_user
from onprez.models.user import User
from onprez.routers.error_mapping import http_error_for, locked_exception
from onprez.services.account_security import AccountSecurityGuard
from onprez.services.auth_attempts import detect_suspicious_activity, record_login_attempt
from onprez.services.errors import AccountLocked, OnPrezError
from onprez.services.passwords import hash_password, needs_rehash, verify_password
from onprez.services.security_logging import log_security_event
from onprez.services.sessions import clear_session_cookie, create_session, set_session_cookie

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


def _user_to_dict(db: Session, user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "businesses": [
            {"id": b.id, "name": b.name, "handle": b.handle, "owner": b.owner_id == user.id}
            for b in businesses_for_user(db, user.id).all()
        ],
    }


def _flag_suspicious_activity(db: Session, ip_address: Optional[str], user_agent: Optional[str], user_id=None) -> None:
    for signal in detect_suspicious_activity(db, ip_address):
        log_security_event(
            db,
            action="suspicious_activity",
            severity="warning",
            user_id=user_id,
            details=signal.as_details(),
            ip_address=ip_address,
            user_agent=user_agent,
        )


@router.post("/login")
def login(
    payload: LoginPayload,
    response: Response,
    request: Request,
    db: Session = Depends(get_db),
    guard: AccountSecurityGuard = Depends(get_account_security_guard),
):
    email = payload.email.strip().lower()
    ip_address = get_client_ip(request)
    user_agent = request.headers.get("user-agent")
    set_request_context(client_ip=ip_address, user_agent=user_agent)

    user = db.query(User).filter(func.lower(User.email) == email).first()
    if user is None or not user.active:
        record_login_attempt(
            db,
            email=email,
            success=False,
            user_id=user.id if user else None,
            ip_address=ip_address,
            user_agent=user_agent,
            failure_reason="unknown_user" if user is None else "inactive_user",
        )
        _flag_suspicious_activity(db, ip_address, user_agent)
        db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    try:
        guard.check_lock(user.id, ip_address=ip_address, user_agent=user_agent)
    except AccountLocked as exc:
        record_login_attempt(
            db,
            email=email,
            success=False,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            failure_reason="account_locked",
        )
        db.commit()
        raise locked_exception(exc.expires_at) from exc

    password_is_valid = verify_password(payload.password, user.password_hash)
    try:
        decision = guard.record_auth_result(
            user.id, password_is_valid, ip_address=ip_address, user_agent=user_agent
        )
    except OnPrezError as exc:
        db.rollback()
        logger.warning("login state update failed user_id=%s error=%s", user.id, exc)
        raise http_error_for(exc) from exc
    record_login_attempt(
        db,
        email=email,
        success=decision.allowed,
        user_id=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
        failure_reason=None if decision.allowed else ("account_locked" if decision.locked else "invalid_password"),
    )
    _flag_suspicious_activity(db, ip_address, user_agent, user_id=user.id)

    if decision.allowed and needs_rehash(user.password_hash):
        user.password_hash = hash_password(payload.password)
    db.commit()

    if decision.locked:
        raise locked_exception(decision.expires_at)
    if not decision.allowed:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    set_session_cookie(response, create_session(user.id), request)
    logger.info("login succeeded user_id=%s", user.id)
    return _user_to_dict(db, user)


@router.post("/logout")
def logout(response: Response, request: Request):
    clear_session_cookie(response, request)
    return {"ok": True}


@router.get("/me")
def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _user_to_dict(db, user)
