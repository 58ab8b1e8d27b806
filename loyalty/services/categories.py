"""
Category tree.

The tree is stored as parent pointers only. Re-parenting walks the new
parent's ancestor chain and refuses any move that would close a loop, and
``breadcrumb`` keeps a visited set so a corrupted chain still terminates.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import utc_now
from loyalty.core.errors import CategoryCycle, CategoryInUse, CategoryNotFound, SlugAlreadyUsed
from loyalty.models.category import Category

logger = logging.getLogger("uvicorn.error")

_WS = re.compile(r"\s+")


def slugify(value: str) -> str:
    return _WS.sub("-", (value or "").strip().lower())


async def list_categories(
    db: AsyncSession,
    *,
    active_only: bool = True,
    parent_id: int | None = None,
    roots_only: bool = False,
) -> list[Category]:
    stmt = select(Category).where(Category.deleted_at.is_(None))
    if active_only:
        stmt = stmt.where(Category.is_active.is_(True))
    if roots_only:
        stmt = stmt.where(Category.parent_id.is_(None))
    elif parent_id is not None:
        stmt = stmt.where(Category.parent_id == int(parent_id))

    res = await db.execute(stmt.order_by(Category.position.asc(), Category.name.asc()))
    return list(res.scalars().all())


async def get_category(db: AsyncSession, category_id: int, *, lock: bool = False) -> Category:
    # merchant_count moves through bump(), which bypasses the identity map
    stmt = (
        select(Category)
        .where(Category.id == int(category_id), Category.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    category = res.scalar_one_or_none()
    if not category:
        raise CategoryNotFound()
    return category


async def get_category_by_slug(db: AsyncSession, slug: str) -> Category:
    res = await db.execute(select(Category).where(Category.slug == slugify(slug), Category.deleted_at.is_(None)))
    category = res.scalar_one_or_none()
    if not category:
        raise CategoryNotFound()
    return category


async def children_of(db: AsyncSession, category_id: int) -> list[Category]:
    return await list_categories(db, active_only=True, parent_id=category_id)


async def _ensure_not_descendant(db: AsyncSession, category_id: int, new_parent_id: int) -> None:
    """Raise CategoryCycle when ``new_parent_id`` is ``category_id`` or one of its descendants."""
    seen: set[int] = set()
    current: int | None = int(new_parent_id)
    while current is not None and current not in seen:
        if current == int(category_id):
            raise CategoryCycle()
        seen.add(current)
        res = await db.execute(select(Category.parent_id).where(Category.id == current))
        current = res.scalar_one_or_none()


async def create_category(db: AsyncSession, *, data: dict[str, Any]) -> Category:
    values = dict(data)
    values["slug"] = slugify(values.get("slug") or values["name"])
    if values.get("parent_id") is not None:
        await get_category(db, values["parent_id"])

    category = Category(**values)
    db.add(category)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise SlugAlreadyUsed() from e

    await db.refresh(category)
    logger.info("category created id=%s slug=%s", category.id, category.slug)
    return category


async def update_category(db: AsyncSession, *, category_id: int, data: dict[str, Any]) -> Category:
    category = await get_category(db, category_id)

    values = dict(data)
    if "slug" in values and values["slug"] is not None:
        values["slug"] = slugify(values["slug"])
    if values.get("parent_id") is not None:
        await get_category(db, values["parent_id"])
        await _ensure_not_descendant(db, category.id, values["parent_id"])

    for field, value in values.items():
        setattr(category, field, value)

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise SlugAlreadyUsed() from e

    await db.refresh(category)
    return category


async def delete_category(db: AsyncSession, *, category_id: int) -> None:
    category = await get_category(db, category_id, lock=True)
    if category.merchant_count > 0:
        await db.rollback()
        raise CategoryInUse()

    category.deleted_at = utc_now()
    category.is_active = False
    await db.commit()
    logger.info("category deleted id=%s", category_id)


async def breadcrumb(db: AsyncSession, category: Category) -> list[str]:
    """Names from the root down to ``category``."""
    names = [category.name]
    seen = {category.id}
    parent_id = category.parent_id

    while parent_id is not None and parent_id not in seen:
        seen.add(parent_id)
        res = await db.execute(select(Category).where(Category.id == parent_id))
        parent = res.scalar_one_or_none()
        if parent is None:
            break
        names.append(parent.name)
        parent_id = parent.parent_id

    names.reverse()
    return names
