"""
Async client for the Supabase REST (PostgREST) interface.

Thin wrapper around httpx. Reads whole catalog tables and performs the admin
writes. Raises OriginError subclasses on failures.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from storefront.models import (
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

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=BaseModel)


class OriginError(Exception):
    """Raised when a call to the origin data source fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OriginUnavailable(OriginError):
    """Connection refused, DNS failure, or an unexpected response."""


class OriginTimeout(OriginError):
    """The origin did not answer in time."""


class OriginNotFound(OriginError):
    """A write targeted a row that does not exist."""


class OriginRejected(OriginError):
    """The origin refused the request (4xx), e.g. a unique constraint on write."""


class SupabaseClient:
    """Async client for the storefront tables exposed by PostgREST."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_key: Optional[str] = None,
        products_limit: int = 200,
        timeout: float = 10.0,
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._products_limit = products_limit
        self._timeout = timeout

    def _headers(self, write: bool = False) -> dict[str, str]:
        headers = {}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        if write:
            headers["Prefer"] = "return=representation"
        return headers

    # -- reads --------------------------------------------------------------

    async def fetch_all_products(self) -> list[Product]:
        """Newest products first, bounded by ``products_limit``."""
        params = {
            "select": "*",
            "order": "created_at.desc",
            "limit": str(self._products_limit),
        }
        rows = await self._request("GET", "products", params=params)
        return self._parse(Product, rows)

    async def fetch_all_categories(self) -> list[Category]:
        params = {"select": "*", "order": "sort_order.asc"}
        rows = await self._request("GET", "categories", params=params)
        return self._parse(Category, rows)

    async def fetch_all_offers(self) -> list[Offer]:
        params = {"select": "*", "order": "created_at.desc"}
        rows = await self._request("GET", "offers", params=params)
        return self._parse(Offer, rows)

    async def fetch_product(self, product_id: str) -> Optional[Product]:
        """One product by id, or None if no such row exists."""
        params = {"select": "*", "id": f"eq.{product_id}", "limit": "1"}
        rows = await self._request("GET", "products", params=params)
        products = self._parse(Product, rows)
        return products[0] if products else None

    # -- writes -------------------------------------------------------------

    async def create_product(self, body: ProductCreate) -> Product:
        return await self._insert("products", Product, body)

    async def update_product(self, product_id: str, body: ProductUpdate) -> Product:
        return await self._update("products", Product, product_id, body)

    async def delete_product(self, product_id: str) -> None:
        await self._delete("products", product_id)

    async def create_category(self, body: CategoryCreate) -> Category:
        return await self._insert("categories", Category, body)

    async def update_category(self, category_id: str, body: CategoryUpdate) -> Category:
        return await self._update("categories", Category, category_id, body)

    async def delete_category(self, category_id: str) -> None:
        await self._delete("categories", category_id)

    async def create_offer(self, body: OfferCreate) -> Offer:
        return await self._insert("offers", Offer, body)

    async def update_offer(self, offer_id: str, body: OfferUpdate) -> Offer:
        return await self._update("offers", Offer, offer_id, body)

    async def delete_offer(self, offer_id: str) -> None:
        await self._delete("offers", offer_id)

    async def _insert(self, table: str, model: type[RowT], body: BaseModel) -> RowT:
        rows = await self._request(
            "POST", table, json=body.model_dump(mode="json"), write=True
        )
        if not rows:
            raise OriginUnavailable(f"Insert into {table} returned no row")
        return self._parse(model, rows)[0]

    async def _update(
        self, table: str, model: type[RowT], row_id: str, body: BaseModel
    ) -> RowT:
        rows = await self._request(
            "PATCH",
            table,
            params={"id": f"eq.{row_id}"},
            json=body.model_dump(mode="json", exclude_unset=True),
            write=True,
        )
        if not rows:
            raise OriginNotFound(f"{table} row {row_id} not found", status_code=404)
        return self._parse(model, rows)[0]

    async def _delete(self, table: str, row_id: str) -> None:
        rows = await self._request(
            "DELETE", table, params={"id": f"eq.{row_id}"}, write=True
        )
        if not rows:
            raise OriginNotFound(f"{table} row {row_id} not found", status_code=404)

    # -- transport ----------------------------------------------------------

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[dict] = None,
        json: Any = None,
        write: bool = False,
    ) -> list[dict]:
        """Send one PostgREST request and return the decoded row list."""
        url = f"{self._base_url}/rest/v1/{table}"
        try:
            response = await self._http.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(write=write),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.error("Origin request timed out: %s %s -> %s", method, url, exc)
            raise OriginTimeout(f"Timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.error("Origin request failed: %s %s -> %s", method, url, exc)
            raise OriginUnavailable(f"Connection error: {exc}") from exc

        if 400 <= response.status_code < 500:
            detail = self._error_message(response)
            logger.error(
                "Origin rejected %s %s with %d: %s",
                method,
                url,
                response.status_code,
                detail,
            )
            raise OriginRejected(
                f"Origin rejected request ({response.status_code}): {detail}",
                status_code=response.status_code,
            )
        if response.status_code >= 300:
            logger.error(
                "Origin returned %d for %s %s", response.status_code, method, url
            )
            raise OriginUnavailable(
                f"Origin returned {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return []
        try:
            body = response.json()
        except ValueError as exc:
            logger.error("Origin sent non-JSON body for %s %s", method, url)
            raise OriginUnavailable(f"Invalid JSON from {table}") from exc
        if not isinstance(body, list):
            raise OriginUnavailable(f"Unexpected payload from {table}: {type(body).__name__}")
        return body

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """PostgREST puts the reason in a JSON ``message`` field."""
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return response.text[:200]

    @staticmethod
    def _parse(model: type[RowT], rows: list[dict]) -> list[RowT]:
        try:
            return TypeAdapter(list[model]).validate_python(rows)
        except ValidationError as exc:
            logger.error("Malformed %s rows from origin: %s", model.__name__, exc)
            raise OriginUnavailable(f"Malformed {model.__name__} rows") from exc
