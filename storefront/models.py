"""
Pydantic models for the storefront catalog API.

Read models mirror the Postgres rows served through PostgREST and are frozen:
a cached payload is shared between requests and must never change in place.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class _Row(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def null_to_default(cls, value, info: ValidationInfo):
        # NULL in a column with a database default reads as that default.
        if value is None and info.field_name is not None:
            field = cls.model_fields[info.field_name]
            if not field.is_required():
                return field.get_default(call_default_factory=True)
        return value


class Product(_Row):
    """A catalog product."""

    id: str
    name: str
    price: float = Field(ge=0, description="Price in BDT")
    image_url: Optional[str] = None
    category: Optional[str] = Field(default=None, description="Category name")
    description: Optional[str] = None
    stock: int = 0
    is_featured: bool = False
    is_latest: bool = False
    is_best_selling: bool = False
    created_at: Optional[datetime] = None


class Category(_Row):
    """A product category with its Bengali display name."""

    id: str
    name: str
    name_bengali: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    created_at: Optional[datetime] = None


class Offer(_Row):
    """A promotional offer banner."""

    id: str
    title: str
    description: Optional[str] = None
    expiry: Optional[datetime] = None
    active: bool = True
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Write bodies
# ---------------------------------------------------------------------------


class ProductCreate(BaseModel):
    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    image_url: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    stock: int = Field(default=0, ge=0)
    is_featured: bool = False
    is_latest: bool = False
    is_best_selling: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    image_url: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0)
    is_featured: Optional[bool] = None
    is_latest: Optional[bool] = None
    is_best_selling: Optional[bool] = None


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1)
    name_bengali: str = Field(min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    name_bengali: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class OfferCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    expiry: Optional[datetime] = None
    active: bool = True


class OfferUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    expiry: Optional[datetime] = None
    active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class CacheState(str, Enum):
    fresh = "fresh"
    stale = "stale"
    expired = "expired"
    empty = "empty"


class CacheSource(str, Enum):
    """Where a served payload came from; sent as the X-Cache header."""

    hit = "HIT"  # fresh cache entry
    stale = "STALE"  # stale entry, background refresh started
    miss = "MISS"  # fetched from the origin for this request
    degraded = "DEGRADED"  # origin failed, cached entry of any age
    fallback = "FALLBACK"  # origin failed, nothing cached: static catalog


class CacheKeyStatus(BaseModel):
    """Snapshot of one cache key, for GET /api/cache/status."""

    key: str
    state: CacheState
    items: int = Field(ge=0, description="Items in the cached payload (0 when empty)")
    age_seconds: Optional[float] = Field(
        default=None, description="Seconds since the payload was fetched from the origin"
    )
    idle_seconds: Optional[float] = Field(
        default=None, description="Seconds since the payload was last served"
    )
    in_flight: bool = Field(description="Whether an origin fetch is pending")
    fresh_ttl: float
    stale_ttl: float
