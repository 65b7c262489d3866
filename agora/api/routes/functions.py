"""
agora.api.routes.functions — Server functions
==============================================

``POST /api/functions/get_user_chats`` returns the caller's chat list built
server-side in one statement.  Errors use the ``{"error": …}`` envelope
rather than FastAPI's ``{"detail": …}``.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from agora.api.deps import JWT_SECRET, bearer_token, get_engine
from agora.errors import NotAuthenticatedError
from agora.services.chat_service import get_user_chats
from agora.session import SessionContext

router = APIRouter(prefix="/functions", tags=["functions"])
logger = logging.getLogger(__name__)


def _unauthorized() -> JSONResponse:
    return JSONResponse({"error": "Unauthorized"}, status_code=401)


@router.post("/get_user_chats")
def get_user_chats_function(
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
):
    try:
        ctx = SessionContext.resolve(bearer_token(authorization), JWT_SECRET)
    except NotAuthenticatedError:
        return _unauthorized()
    if not ctx.is_authenticated:
        return _unauthorized()

    try:
        chats = get_user_chats(engine, ctx.require_user())
    except SQLAlchemyError as exc:
        logger.exception("Error in get_user_chats")
        return JSONResponse({"error": str(exc)}, status_code=500)
    return {"data": chats}
