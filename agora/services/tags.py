"""
agora.services.tags — Tag normalization shared by discussions and bounties
"""

from __future__ import annotations

from collections.abc import Iterable


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    """Strip, drop blanks and collapse duplicates, keeping first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags or ():
        cleaned = str(tag).strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def sync_tags(owner, tags: Iterable[str] | None, tag_cls: type) -> None:
    """Make ``owner.tags`` hold exactly *tags*.

    Rows whose tag survives are kept as-is, so the unique (owner, tag)
    constraint never sees a re-insert of an existing pair.  Dropped rows are
    removed through the relationship's delete-orphan cascade.
    """
    wanted = normalize_tags(tags)
    keep = [row for row in owner.tags if row.tag in wanted]
    present = {row.tag for row in keep}
    owner.tags = keep + [tag_cls(tag=tag) for tag in wanted if tag not in present]
