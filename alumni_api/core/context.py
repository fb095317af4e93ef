"""Per-request correlation state."""

from __future__ import annotations

from contextvars import ContextVar, Token
import uuid


NO_REQUEST_ID = "-"

_request_id: ContextVar[str | None] = ContextVar("alumni_api_request_id", default=None)


def new_request_id() -> str:
    return str(uuid.uuid4())


def bind_request_id(request_id: str | None = None) -> Token[str | None]:
    return _request_id.set(request_id or new_request_id())


def reset_request_id(token: Token[str | None]) -> None:
    _request_id.reset(token)


def current_request_id() -> str:
    return _request_id.get() or NO_REQUEST_ID
