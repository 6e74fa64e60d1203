from __future__ import annotations

from contextvars import ContextVar


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_BUSINESS_ID_CTX: ContextVar[str | None] = ContextVar("business_id", default=None)
_USER_ID_CTX: ContextVar[str | None] = ContextVar("user_id", default=None)
_CLIENT_IP_CTX: ContextVar[str | None] = ContextVar("client_ip", default=None)
_USER_AGENT_CTX: ContextVar[str | None] = ContextVar("user_agent", default=None)

_ALL_VARS = (_REQUEST_ID_CTX, _BUSINESS_ID_CTX, _USER_ID_CTX, _CLIENT_IP_CTX, _USER_AGENT_CTX)


def set_request_context(
    *,
    request_id: str | None = None,
    business_id: str | None = None,
    user_id: str | None = None,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    values = (request_id, business_id, user_id, client_ip, user_agent)
    for var, value in zip(_ALL_VARS, values):
        if value is not None:
            var.set(value)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_business_id() -> str | None:
    return _BUSINESS_ID_CTX.get()


def get_user_id() -> str | None:
    return _USER_ID_CTX.get()


def get_client_ip() -> str | None:
    """Source address of the current request, used by security events."""
    return _CLIENT_IP_CTX.get()


def get_user_agent() -> str | None:
    return _USER_AGENT_CTX.get()


def clear_request_context() -> None:
    for var in _ALL_VARS:
        var.set(None)
