"""
agora.api.deps — FastAPI dependency injection
==============================================

Process-wide singletons (engine, config, subscription manager, object
storage) and bearer-token → :class:`SessionContext` resolution.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import Engine

from agora.config import AgoraConfig, load_config
from agora.database.engine import create_db_engine
from agora.errors import NotAuthenticatedError
from agora.realtime.subscriptions import SubscriptionManager
from agora.services.storage_service import ObjectStorage
from agora.session import JWT_ALGORITHM, SessionContext

_WEAK_SECRETS = frozenset({
    "agora-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

__all__ = ["JWT_ALGORITHM", "JWT_SECRET"]


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> AgoraConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_manager() -> SubscriptionManager:
    return SubscriptionManager()


def get_storage(cfg: Annotated[AgoraConfig, Depends(get_config)]) -> ObjectStorage:
    return _storage_for(cfg.storage_public_url, cfg.max_upload_bytes)


@lru_cache(maxsize=4)
def _storage_for(public_url: str, max_bytes: int) -> ObjectStorage:
    return ObjectStorage(public_url=public_url, max_bytes=max_bytes)


# ---------------------------------------------------------------------------
# Viewer resolution
# ---------------------------------------------------------------------------
def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer …`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise NotAuthenticatedError("Malformed Authorization header")
    return token.strip()


def get_viewer(
    authorization: Annotated[str | None, Header()] = None,
) -> SessionContext:
    """The request's viewer; anonymous when no token is sent.

    A token that is present but invalid is a 401, never an anonymous viewer.
    """
    try:
        return SessionContext.resolve(bearer_token(authorization), JWT_SECRET)
    except NotAuthenticatedError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, str(exc)) from exc


def get_current_user(
    viewer: Annotated[SessionContext, Depends(get_viewer)],
) -> SessionContext:
    """Like :func:`get_viewer` but rejects anonymous requests with 401."""
    if not viewer.is_authenticated:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return viewer
