from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class CategoryBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    color: str = Field(default="#667eea", pattern=HEX_COLOR)
    parent_id: Optional[int] = None
    position: int = Field(default=0, ge=0)
    is_active: bool = True
    meta: Dict[str, Any] = Field(default_factory=dict)


class CategoryCreate(CategoryBase):
    model_config = ConfigDict(extra="forbid")


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    parent_id: Optional[int] = None
    position: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    meta: Optional[Dict[str, Any]] = None


class CategoryOut(CategoryBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    merchant_count: int
    created_at: datetime


class CategoryDetailOut(CategoryOut):
    children: list[CategoryOut] = Field(default_factory=list)
    breadcrumb: list[str] = Field(default_factory=list)
