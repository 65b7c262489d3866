"""
agora.api.routes.bounties — Bounty board endpoints
===================================================
"""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from agora.api.deps import get_current_user, get_engine
from agora.services import bounty_service
from agora.session import SessionContext

router = APIRouter(prefix="/bounties", tags=["bounties"])


class BountyCreate(BaseModel):
    title: str
    description: str
    price: Decimal
    currency: str = "USD"
    tags: list[str] = Field(default_factory=list)


class BountyUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    price: Decimal | None = None
    currency: str | None = None
    status: str | None = None
    tags: list[str] | None = None


@router.get("")
def list_bounties(status: str | None = None, engine: Engine = Depends(get_engine)):
    return bounty_service.list_bounties(engine, status=status)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_bounty(
    body: BountyCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return bounty_service.create_bounty(engine, user, **body.model_dump())


@router.patch("/{bounty_id}")
def update_bounty(
    bounty_id: str,
    body: BountyUpdate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return bounty_service.update_bounty(engine, user, bounty_id, **body.model_dump())


@router.delete("/{bounty_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bounty(
    bounty_id: str,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    bounty_service.delete_bounty(engine, user, bounty_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
