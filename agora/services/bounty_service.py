"""
agora.services.bounty_service — Bounty CRUD
============================================

A bounty is a priced task request with tags.  Validation (non-blank text,
positive price, three-letter currency, known status) runs before any row is
written.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from agora.constants import CURRENCY_RE, BountyStatus, ModerationAction
from agora.database.engine import get_session
from agora.database.models import Bounty, BountyTag
from agora.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from agora.services.profile_service import author_summary, load_profiles
from agora.services.rpc import ensure_not_moderated
from agora.services.tags import normalize_tags, sync_tags

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
MAX_PRICE = Decimal("9999999999.99")  # Numeric(12, 2)


def validate_price(price: Any) -> Decimal:
    """Parse *price* into a positive two-decimal amount.

    Raises
    ------
    InvalidInputError
        If *price* is not a number, rounds to zero or less, or does not fit
        the ``price`` column.
    """
    try:
        value = Decimal(str(price))
    except InvalidOperation as exc:
        raise InvalidInputError(f"Invalid price: {price!r}") from exc
    if not value.is_finite():
        raise InvalidInputError(f"Invalid price: {price!r}")
    try:
        value = value.quantize(Decimal("0.01"))
    except InvalidOperation as exc:
        # More digits than the decimal context holds
        raise InvalidInputError(f"Price must not exceed {MAX_PRICE}") from exc
    if value <= 0:
        raise InvalidInputError("Price must be greater than zero")
    if value > MAX_PRICE:
        raise InvalidInputError(f"Price must not exceed {MAX_PRICE}")
    return value


def validate_currency(currency: str | None) -> str:
    code = (currency or "").strip().upper()
    if not CURRENCY_RE.match(code):
        raise InvalidInputError(f"Invalid currency code: {currency!r}")
    return code


def validate_status(status: str) -> str:
    try:
        return str(BountyStatus(status))
    except ValueError as exc:
        raise InvalidInputError(f"Invalid bounty status: {status!r}") from exc


def _require_text(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidInputError(f"{field} must not be blank")
    return cleaned


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _serialize(session: Session, bounties: list[Bounty]) -> list[dict[str, Any]]:
    ids = [b.id for b in bounties]
    if not ids:
        return []
    tags: dict[str, list[str]] = defaultdict(list)
    for bounty_id, tag in session.execute(
        select(BountyTag.bounty_id, BountyTag.tag)
        .where(BountyTag.bounty_id.in_(ids))
        .order_by(BountyTag.tag)
    ):
        tags[bounty_id].append(tag)
    profiles = load_profiles(session, {b.author_id for b in bounties})
    return [
        {
            "id": b.id,
            "title": b.title,
            "description": b.description,
            "price": b.price,
            "currency": b.currency,
            "status": b.status,
            "author_id": b.author_id,
            "author": author_summary(profiles.get(b.author_id)),
            "tags": tags.get(b.id, []),
            "created_at": b.created_at,
            "updated_at": b.updated_at,
        }
        for b in bounties
    ]


def list_bounties(engine: Engine, *, status: str | None = None) -> list[dict[str, Any]]:
    """Bounties newest first, optionally limited to one status."""
    stmt = select(Bounty).order_by(Bounty.created_at.desc())
    if status is not None:
        stmt = stmt.where(Bounty.status == validate_status(status))
    with Session(engine) as session:
        return _serialize(session, list(session.scalars(stmt)))


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def create_bounty(
    engine: Engine,
    ctx: SessionContext,
    *,
    title: str,
    description: str,
    price: Any,
    currency: str = "USD",
    tags: list[str] | None = None,
) -> dict[str, Any]:
    """Validate, then insert the bounty and its tags in one transaction."""
    user_id = ctx.require_user()
    title = _require_text(title, "Title")
    description = _require_text(description, "Description")
    amount = validate_price(price)
    code = validate_currency(currency)

    with get_session(engine) as session:
        ensure_not_moderated(session, user_id, ModerationAction.BAN)
        bounty = Bounty(
            author_id=user_id,
            title=title,
            description=description,
            price=amount,
            currency=code,
            status=BountyStatus.OPEN.value,
        )
        bounty.tags = [BountyTag(tag=t) for t in normalize_tags(tags)]
        session.add(bounty)
        session.flush()
        logger.info("Bounty %s created by %s (%s %s)", bounty.id, user_id, amount, code)
        return _serialize(session, [bounty])[0]


def _owned_bounty(session: Session, bounty_id: str, user_id: str) -> Bounty:
    bounty = session.get(Bounty, bounty_id)
    if bounty is None:
        raise NotFoundError(f"Bounty {bounty_id} not found")
    if bounty.author_id != user_id:
        raise PermissionDeniedError("Only the author can change this bounty")
    return bounty


def update_bounty(
    engine: Engine,
    ctx: SessionContext,
    bounty_id: str,
    *,
    title: str | None = None,
    description: str | None = None,
    price: Any = None,
    currency: str | None = None,
    status: str | None = None,
    tags: list[str] | None = None,
) -> dict[str, Any]:
    """Edit the viewer's own bounty.  ``None`` leaves a field unchanged."""
    user_id = ctx.require_user()
    changes: dict[str, Any] = {}
    if title is not None:
        changes["title"] = _require_text(title, "Title")
    if description is not None:
        changes["description"] = _require_text(description, "Description")
    if price is not None:
        changes["price"] = validate_price(price)
    if currency is not None:
        changes["currency"] = validate_currency(currency)
    if status is not None:
        changes["status"] = validate_status(status)

    with get_session(engine) as session:
        bounty = _owned_bounty(session, bounty_id, user_id)
        for key, value in changes.items():
            setattr(bounty, key, value)
        if tags is not None:
            sync_tags(bounty, tags, BountyTag)
        session.flush()
        return _serialize(session, [bounty])[0]


def delete_bounty(engine: Engine, ctx: SessionContext, bounty_id: str) -> None:
    user_id = ctx.require_user()
    with get_session(engine) as session:
        session.delete(_owned_bounty(session, bounty_id, user_id))
    logger.info("Bounty %s deleted by %s", bounty_id, user_id)
