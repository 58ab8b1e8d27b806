from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.db import get_db
from loyalty.core.deps import require_admin
from loyalty.models.account import Account
from loyalty.models.category import Category
from loyalty.schemas.auth import DetailOut
from loyalty.schemas.categories import CategoryCreate, CategoryDetailOut, CategoryOut, CategoryUpdate
from loyalty.services import categories as categories_service

router = APIRouter(prefix="/categories", tags=["categories"])
admin_router = APIRouter(prefix="/admin/categories", tags=["admin-categories"])


async def _detail(db: AsyncSession, category: Category) -> CategoryDetailOut:
    children = await categories_service.children_of(db, category.id)
    out = CategoryDetailOut.model_validate(category)
    out.children = [CategoryOut.model_validate(c) for c in children]
    out.breadcrumb = await categories_service.breadcrumb(db, category)
    return out


@router.get("", response_model=list[CategoryOut])
async def list_categories(
    parent_id: Optional[int] = Query(default=None),
    roots_only: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
):
    return await categories_service.list_categories(db, parent_id=parent_id, roots_only=roots_only)


@router.get("/slug/{slug}", response_model=CategoryDetailOut)
async def get_category_by_slug(slug: str, db: AsyncSession = Depends(get_db)):
    category = await categories_service.get_category_by_slug(db, slug)
    return await _detail(db, category)


@router.get("/{category_id}", response_model=CategoryDetailOut)
async def get_category(category_id: int, db: AsyncSession = Depends(get_db)):
    category = await categories_service.get_category(db, category_id)
    return await _detail(db, category)


@admin_router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await categories_service.create_category(db, data=payload.model_dump())


@admin_router.put("/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    return await categories_service.update_category(
        db, category_id=category_id, data=payload.model_dump(exclude_unset=True)
    )


@admin_router.delete("/{category_id}", response_model=DetailOut)
async def delete_category(
    category_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Account = Depends(require_admin),
):
    await categories_service.delete_category(db, category_id=category_id)
    return DetailOut(detail="Category deleted")
