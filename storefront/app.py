"""
FastAPI application for the storefront catalog API.

Lifespan builds the httpx client, origin client, cache and catalog service
once and keeps them on app.state; handlers receive them through Depends.
Routes: /api/products, /api/categories, /api/offers (+ admin writes),
/api/cache/*, /health.
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import TypeAdapter

from storefront.cache import ReadThroughCache
from storefront.catalog import CatalogService, build_cache
from storefront.config import CachePolicy, load_config
from storefront.models import (
    CacheKeyStatus,
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
from storefront.supabase_client import (
    OriginError,
    OriginNotFound,
    OriginRejected,
    SupabaseClient,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load config, create HTTP client, origin client, cache, catalog."""
    log_level = os.environ.get("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    logger.info(
        "Loaded config: origin=%s, products_limit=%d, datasets=%s",
        config.supabase_url,
        config.products_limit,
        ", ".join(config.cache),
    )
    if config.admin_api_key is None:
        logger.warning("ADMIN_API_KEY is not set; admin endpoints are unauthenticated")

    async with httpx.AsyncClient() as http_client:
        origin = SupabaseClient(
            http_client=http_client,
            base_url=config.supabase_url,
            api_key=config.supabase_key,
            products_limit=config.products_limit,
        )
        cache = build_cache(config, origin)
        app.state.config = config
        app.state.cache = cache
        app.state.catalog = CatalogService(origin=origin, cache=cache)
        restored = cache.restore()
        if restored:
            logger.info("Restored snapshots: %s", ", ".join(restored))
        if config.warm_on_startup:
            cache.warm()
        logger.info("Storefront API ready")
        try:
            yield
        finally:
            await cache.aclose()
            app.state.catalog = None
            app.state.cache = None
            app.state.config = None


app = FastAPI(
    title="Storefront Catalog API",
    version="1.0.0",
    description="""
Catalog API for the gift and lifestyle storefront.

## Caching

Products, categories and offers are served from an in-process read-through
cache. Fresh payloads are returned directly; stale payloads are returned while
a single background refresh runs. When the database is unreachable the last
known payload is served, or a small built-in catalog if nothing was ever
loaded. `Cache-Control` headers mirror the server-side freshness windows and
`X-Cache` reports where the payload came from (`HIT`, `STALE`, `MISS`,
`DEGRADED` or `FALLBACK`).

## Authentication

Write and cache-admin endpoints require the `X-API-Key` header when
`ADMIN_API_KEY` is configured. Reads and `/health` are always public.
    """.strip(),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "catalog", "description": "Cached catalog reads"},
        {"name": "admin", "description": "Catalog writes and cache control"},
        {"name": "health", "description": "Service health check"},
    ],
)


# ---------------------------------------------------------------------------
# Middleware and error handlers
# ---------------------------------------------------------------------------


@app.middleware("http")
async def add_response_time_header(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Report handler latency in X-Response-Time."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"
    return response


@app.exception_handler(OriginNotFound)
async def origin_not_found_handler(request: Request, exc: OriginNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(OriginRejected)
async def origin_rejected_handler(request: Request, exc: OriginRejected) -> JSONResponse:
    status_code = 409 if exc.status_code == 409 else 400
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(OriginError)
async def origin_error_handler(request: Request, exc: OriginError) -> JSONResponse:
    logger.warning("Origin write failed for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": f"Origin write failed: {exc}"})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_catalog(request: Request) -> CatalogService:
    catalog = getattr(request.app.state, "catalog", None)
    if catalog is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return catalog


def get_cache(request: Request) -> ReadThroughCache:
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return cache


async def verify_admin_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
) -> None:
    """Check the admin API key if one is configured."""
    config = getattr(request.app.state, "config", None)
    if config is None or config.admin_api_key is None:
        return
    if api_key != config.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------

_product_list = TypeAdapter(list[Product])
_category_list = TypeAdapter(list[Category])
_offer_list = TypeAdapter(list[Offer])


def cache_control(policy: CachePolicy) -> str:
    """Cache-Control value matching the server-side freshness windows."""
    max_age = int(policy.fresh_ttl)
    swr = int(policy.stale_ttl - policy.fresh_ttl)
    return f"public, max-age={max_age}, stale-while-revalidate={swr}"


def _etag_matches(request: Request, etag: str) -> bool:
    header = request.headers.get("if-none-match")
    if not header:
        return False
    candidates = [value.strip().removeprefix("W/") for value in header.split(",")]
    return "*" in candidates or etag in candidates


def cached_json(
    request: Request,
    body: bytes,
    policy: CachePolicy,
    source: CacheSource,
    count: Optional[int] = None,
) -> Response:
    """Build a JSON response with Cache-Control, ETag and X-Cache; 304 on If-None-Match."""
    etag = f'"{hashlib.sha1(body).hexdigest()}"'
    headers = {
        "Cache-Control": cache_control(policy),
        "ETag": etag,
        "X-Cache": source.value,
    }
    if _etag_matches(request, etag):
        return Response(status_code=304, headers=headers)
    if count is not None:
        headers["X-Items-Count"] = str(count)
    return Response(content=body, media_type="application/json", headers=headers)


# ---------------------------------------------------------------------------
# Routes: health and catalog reads
# ---------------------------------------------------------------------------


@app.get("/health", tags=["health"], summary="Health check")
async def health():
    """Always returns HTTP 200. No authentication required."""
    return {"status": "healthy"}


@app.get(
    "/api/products",
    response_model=list[Product],
    tags=["catalog"],
    summary="List products",
)
async def list_products(
    request: Request,
    category: Optional[str] = None,
    catalog: CatalogService = Depends(get_catalog),
    cache: ReadThroughCache = Depends(get_cache),
):
    """
    Return the product catalog, newest first.

    Pass `category` (category name) to filter. Served from cache; never
    fails because the database is slow or down.
    """
    products, source = await catalog.products(category=category)
    body = _product_list.dump_json(list(products))
    return cached_json(
        request, body, cache.policy("products"), source, count=len(products)
    )


@app.get(
    "/api/products/{product_id}",
    response_model=Product,
    tags=["catalog"],
    summary="Get one product",
    responses={404: {"description": "Product not found"}},
)
async def get_product(
    product_id: str,
    request: Request,
    catalog: CatalogService = Depends(get_catalog),
    cache: ReadThroughCache = Depends(get_cache),
):
    product, source = await catalog.product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product '{product_id}' not found")
    return cached_json(
        request, product.model_dump_json().encode(), cache.policy("products"), source
    )


@app.get(
    "/api/categories",
    response_model=list[Category],
    tags=["catalog"],
    summary="List categories",
)
async def list_categories(
    request: Request,
    catalog: CatalogService = Depends(get_catalog),
    cache: ReadThroughCache = Depends(get_cache),
):
    categories, source = await catalog.categories()
    body = _category_list.dump_json(list(categories))
    return cached_json(
        request, body, cache.policy("categories"), source, count=len(categories)
    )


@app.get(
    "/api/offers",
    response_model=list[Offer],
    tags=["catalog"],
    summary="List offers",
)
async def list_offers(
    request: Request,
    catalog: CatalogService = Depends(get_catalog),
    cache: ReadThroughCache = Depends(get_cache),
):
    offers, source = await catalog.offers()
    body = _offer_list.dump_json(list(offers))
    return cached_json(request, body, cache.policy("offers"), source, count=len(offers))


# ---------------------------------------------------------------------------
# Routes: admin writes (write -> invalidate -> respond)
# ---------------------------------------------------------------------------

admin = [Depends(verify_admin_key)]


@app.post(
    "/api/products",
    response_model=Product,
    status_code=201,
    dependencies=admin,
    tags=["admin"],
)
async def create_product(body: ProductCreate, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.create_product(body)


@app.api_route(
    "/api/products/{product_id}",
    methods=["PATCH", "PUT"],
    response_model=Product,
    dependencies=admin,
    tags=["admin"],
)
async def update_product(
    product_id: str, body: ProductUpdate, catalog: CatalogService = Depends(get_catalog)
):
    return await catalog.update_product(product_id, body)


@app.delete(
    "/api/products/{product_id}", status_code=204, dependencies=admin, tags=["admin"]
)
async def delete_product(product_id: str, catalog: CatalogService = Depends(get_catalog)):
    await catalog.delete_product(product_id)
    return Response(status_code=204)


@app.post(
    "/api/categories",
    response_model=Category,
    status_code=201,
    dependencies=admin,
    tags=["admin"],
)
async def create_category(body: CategoryCreate, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.create_category(body)


@app.api_route(
    "/api/categories/{category_id}",
    methods=["PATCH", "PUT"],
    response_model=Category,
    dependencies=admin,
    tags=["admin"],
)
async def update_category(
    category_id: str, body: CategoryUpdate, catalog: CatalogService = Depends(get_catalog)
):
    return await catalog.update_category(category_id, body)


@app.delete(
    "/api/categories/{category_id}", status_code=204, dependencies=admin, tags=["admin"]
)
async def delete_category(category_id: str, catalog: CatalogService = Depends(get_catalog)):
    await catalog.delete_category(category_id)
    return Response(status_code=204)


@app.post(
    "/api/offers",
    response_model=Offer,
    status_code=201,
    dependencies=admin,
    tags=["admin"],
)
async def create_offer(body: OfferCreate, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.create_offer(body)


@app.api_route(
    "/api/offers/{offer_id}",
    methods=["PATCH", "PUT"],
    response_model=Offer,
    dependencies=admin,
    tags=["admin"],
)
async def update_offer(
    offer_id: str, body: OfferUpdate, catalog: CatalogService = Depends(get_catalog)
):
    return await catalog.update_offer(offer_id, body)


@app.delete("/api/offers/{offer_id}", status_code=204, dependencies=admin, tags=["admin"])
async def delete_offer(offer_id: str, catalog: CatalogService = Depends(get_catalog)):
    await catalog.delete_offer(offer_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Routes: cache administration
# ---------------------------------------------------------------------------


@app.get(
    "/api/cache/status",
    response_model=list[CacheKeyStatus],
    dependencies=admin,
    tags=["admin"],
    summary="Cache state per dataset",
)
async def cache_status(cache: ReadThroughCache = Depends(get_cache)):
    return cache.status()


@app.post(
    "/api/cache/invalidate",
    dependencies=admin,
    tags=["admin"],
    summary="Drop cached datasets",
    responses={404: {"description": "Unknown cache key"}},
)
async def invalidate_cache(key: str = "all", cache: ReadThroughCache = Depends(get_cache)):
    """Drop one dataset (`key=products`) or all of them (`key=all`)."""
    try:
        invalidated = cache.invalidate(key)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown cache key '{key}'")
    return {"invalidated": invalidated}
