"""
agora.session — Explicit viewer session context
================================================

Identity is owned by an external provider; Agora only sees the bearer token
it issued.  A :class:`SessionContext` wraps the resolved viewer and is passed
to every service call instead of being read from ambient global state.

Lifecycle::

    ctx = SessionContext.resolve(token, secret)   # app start / sign-in
    feed = DiscussionFeed(engine, manager, ctx)   # feeds listen for changes
    ctx.sign_out()                                # invalidate + notify
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import jwt
from jwt.exceptions import InvalidTokenError

from agora.errors import NotAuthenticatedError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

ViewerListener = Callable[["SessionContext"], None]


class SessionContext:
    """The current viewer (or nobody) plus the token that proved it."""

    def __init__(
        self,
        user_id: str | None = None,
        *,
        access_token: str | None = None,
        claims: dict | None = None,
    ) -> None:
        self._user_id = user_id
        self._access_token = access_token
        self._claims = dict(claims or {})
        self._listeners: list[ViewerListener] = []
        self._lock = threading.Lock()

    # -------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------
    @classmethod
    def anonymous(cls) -> SessionContext:
        return cls()

    @classmethod
    def for_user(cls, user_id: str) -> SessionContext:
        """Build a context for a known account id (trusted callers, tests)."""
        return cls(user_id)

    @classmethod
    def resolve(
        cls,
        token: str | None,
        secret: str,
        *,
        algorithms: tuple[str, ...] = (JWT_ALGORITHM,),
    ) -> SessionContext:
        """Decode *token* and return an authenticated context.

        An absent token yields an anonymous context.  A present but invalid
        token raises :class:`NotAuthenticatedError`; it is never silently
        downgraded to anonymous.
        """
        if not token:
            return cls.anonymous()
        try:
            claims = jwt.decode(token, secret, algorithms=list(algorithms))
        except InvalidTokenError as exc:
            raise NotAuthenticatedError("Invalid token") from exc
        sub = claims.get("sub")
        if not sub:
            raise NotAuthenticatedError("Token has no subject")
        return cls(str(sub), access_token=token, claims=claims)

    # -------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------
    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def claims(self) -> dict:
        return dict(self._claims)

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def require_user(self) -> str:
        """Return the viewer id or raise :class:`NotAuthenticatedError`."""
        if self._user_id is None:
            raise NotAuthenticatedError("User not authenticated")
        return self._user_id

    # -------------------------------------------------------------------
    # Viewer changes
    # -------------------------------------------------------------------
    def add_listener(self, listener: ViewerListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ViewerListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def switch_user(self, token: str | None, secret: str) -> None:
        """Re-resolve the viewer from a new token and notify listeners."""
        fresh = SessionContext.resolve(token, secret)
        self._set(fresh.user_id, fresh.access_token, fresh.claims)

    def sign_out(self) -> None:
        """Invalidate the session and clear the viewer."""
        self._set(None, None, {})

    def _set(self, user_id: str | None, token: str | None, claims: dict) -> None:
        changed = user_id != self._user_id
        self._user_id = user_id
        self._access_token = token
        self._claims = dict(claims)
        if not changed:
            return
        logger.info("Session viewer changed → %s", user_id or "anonymous")
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception:
                logger.exception("Viewer-change listener failed")

    def __repr__(self) -> str:
        return f"<SessionContext user={self._user_id!r}>"
