from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, MutableMapping

from pairnotes.errors import AuthError, NotAuthenticatedError, ValidationError
from pairnotes.models.state import AppState, is_user_key, partner_of

ACTIVE_SESSION_KEY = "activeUserSessionKey"
PENDING_SESSION_KEY = "loginAttemptUserKey"

_AUTH_FAILED = "Wrong password or unknown user."


@dataclass(frozen=True)
class SessionContext:
    """Who this caller is: the authenticated key, and the key offered a login after a switch."""

    active_key: str | None = None
    pending_key: str | None = None

    @classmethod
    def from_mapping(cls, session: MutableMapping[str, Any]) -> "SessionContext":
        active = session.get(ACTIVE_SESSION_KEY)
        pending = session.get(PENDING_SESSION_KEY)
        return cls(
            active_key=active if is_user_key(active) else None,
            pending_key=pending if is_user_key(pending) else None,
        )

    def write_to(self, session: MutableMapping[str, Any]) -> None:
        for name, value in ((ACTIVE_SESSION_KEY, self.active_key), (PENDING_SESSION_KEY, self.pending_key)):
            if value is None:
                session.pop(name, None)
            else:
                session[name] = value


def active_user(ctx: SessionContext) -> str | None:
    return ctx.active_key


def require_active(ctx: SessionContext) -> str:
    if not is_user_key(ctx.active_key):
        raise NotAuthenticatedError("Not logged in.")
    return ctx.active_key


def login(state: AppState, user_key: Any, password: str | None) -> SessionContext:
    """
    Authenticate as `user_key`. An account without a password accepts anything;
    otherwise the password must match exactly. Records the key as last active.
    """
    if not is_user_key(user_key):
        raise AuthError(_AUTH_FAILED)
    stored = state.user(user_key).password
    if stored is not None and stored != (password or ""):
        raise AuthError(_AUTH_FAILED)

    state.last_active_user_key = user_key
    return SessionContext(active_key=user_key, pending_key=None)


def request_switch(ctx: SessionContext, state: AppState) -> SessionContext:
    if ctx.active_key is not None:
        return SessionContext(active_key=None, pending_key=partner_of(ctx.active_key))
    return SessionContext(active_key=None, pending_key=partner_of(state.last_active_user_key))


def consume_pending(ctx: SessionContext) -> tuple[SessionContext, str | None]:
    """Hand the pending login key to an anonymous caller exactly once."""
    if ctx.active_key is not None or ctx.pending_key is None:
        return ctx, None
    return replace(ctx, pending_key=None), ctx.pending_key


def set_password(ctx: SessionContext, state: AppState, new_password: str | None) -> None:
    user_key = require_active(ctx)
    if new_password is None:
        raise ValidationError("Invalid password submission.")
    state.user(user_key).password = new_password or None
