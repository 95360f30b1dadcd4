"""
Catalog service: cached reads and admin writes.

Every write goes to the origin first and invalidates the affected datasets
only once the origin has confirmed it. A failed write leaves the cache alone.
"""

from __future__ import annotations

import logging
from typing import Optional

from storefront.cache import Dataset, ReadThroughCache, Served
from storefront.config import AppConfig
from storefront.fallback import static_fallback
from storefront.models import (
    CacheSource,
    Category,
    CategoryCreate,
    CategoryUpdate,
    Offer,
    OfferCreate,
    OfferUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
)
from storefront.snapshot import SnapshotStore
from storefront.supabase_client import OriginError, SupabaseClient

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "all"


def build_cache(config: AppConfig, origin: SupabaseClient) -> ReadThroughCache:
    """Wire the origin loaders, policies, static fallbacks and snapshots into one cache."""
    loaders = {
        "products": (origin.fetch_all_products, Product),
        "categories": (origin.fetch_all_categories, Category),
        "offers": (origin.fetch_all_offers, Offer),
    }
    snapshots = SnapshotStore(config.snapshot_dir) if config.snapshot_dir else None
    return ReadThroughCache(
        (
            Dataset(
                key=key,
                loader=loader,
                policy=config.policy_for(key),
                fallback=static_fallback(key),
                model=model,
            )
            for key, (loader, model) in loaders.items()
        ),
        snapshots=snapshots,
    )


class CatalogService:
    """Reads through the cache, writes through the origin."""

    def __init__(self, origin: SupabaseClient, cache: ReadThroughCache) -> None:
        self._origin = origin
        self._cache = cache

    # -- reads --------------------------------------------------------------

    async def products(self, category: Optional[str] = None) -> Served:
        """Cached products, optionally filtered by category name ("all" = no filter)."""
        served = await self._cache.get_with_source("products")
        if category is None or category == ALL_CATEGORIES:
            return served
        products = tuple(p for p in served.payload if p.category == category)
        return Served(products, served.source)

    async def product(self, product_id: str) -> Served:
        """
        One product, or None as payload.

        The cached list only holds the newest ``products_limit`` rows (or the
        static catalog during an outage), so a miss there asks the origin.
        """
        served = await self._cache.get_with_source("products")
        for product in served.payload:
            if product.id == product_id:
                return Served(product, served.source)
        try:
            product = await self._origin.fetch_product(product_id)
        except OriginError as exc:
            logger.warning("Product lookup for %s failed: %s", product_id, exc)
            return Served(None, served.source)
        return Served(product, CacheSource.miss)

    async def categories(self) -> Served:
        return await self._cache.get_with_source("categories")

    async def offers(self) -> Served:
        return await self._cache.get_with_source("offers")

    # -- writes -------------------------------------------------------------

    async def create_product(self, body: ProductCreate) -> Product:
        product = await self._origin.create_product(body)
        self._cache.invalidate("products")
        logger.info("Created product %s", product.id)
        return product

    async def update_product(self, product_id: str, body: ProductUpdate) -> Product:
        product = await self._origin.update_product(product_id, body)
        self._cache.invalidate("products")
        logger.info("Updated product %s", product_id)
        return product

    async def delete_product(self, product_id: str) -> None:
        await self._origin.delete_product(product_id)
        self._cache.invalidate("products")
        logger.info("Deleted product %s", product_id)

    async def create_category(self, body: CategoryCreate) -> Category:
        category = await self._origin.create_category(body)
        self._cache.invalidate("categories")
        logger.info("Created category %s", category.id)
        return category

    async def update_category(self, category_id: str, body: CategoryUpdate) -> Category:
        category = await self._origin.update_category(category_id, body)
        self._cache.invalidate("categories")
        logger.info("Updated category %s", category_id)
        return category

    async def delete_category(self, category_id: str) -> None:
        await self._origin.delete_category(category_id)
        # Products reference categories by name.
        self._cache.invalidate("categories")
        self._cache.invalidate("products")
        logger.info("Deleted category %s", category_id)

    async def create_offer(self, body: OfferCreate) -> Offer:
        offer = await self._origin.create_offer(body)
        self._cache.invalidate("offers")
        logger.info("Created offer %s", offer.id)
        return offer

    async def update_offer(self, offer_id: str, body: OfferUpdate) -> Offer:
        offer = await self._origin.update_offer(offer_id, body)
        self._cache.invalidate("offers")
        logger.info("Updated offer %s", offer_id)
        return offer

    async def delete_offer(self, offer_id: str) -> None:
        await self._origin.delete_offer(offer_id)
        self._cache.invalidate("offers")
        logger.info("Deleted offer %s", offer_id)
