"""
Shared test fixtures for the storefront API.

Provides:
- Row builders for products, categories and offers
- A controllable clock and a scriptable origin loader for cache tests
- A fake Supabase (PostgREST) server for client and E2E tests
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from pytest_httpserver import HTTPServer

from storefront.config import CachePolicy
from storefront.models import Category, Offer, Product

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

def product_row(i: int, category: str = "mugs") -> dict:
    """One products row as PostgREST returns it (numeric price as string)."""
    return {
        "id": f"p-{i}",
        "name": f"কাস্টমাইজড মগ {i}",
        "price": str(300 + i),
        "image_url": f"/images/p-{i}.jpg",
        "category": category,
        "description": "আপনার পছন্দের ছবি সহ মগ",
        "stock": 10,
        "is_featured": i % 2 == 0,
        "is_latest": False,
        "is_best_selling": False,
        "created_at": (BASE_TIME - timedelta(hours=i)).isoformat(),
    }


def category_row(i: int, name: str = "mugs", name_bengali: str = "মগ") -> dict:
    return {
        "id": f"c-{i}",
        "name": name,
        "name_bengali": name_bengali,
        "description": None,
        "image_url": None,
        "is_active": True,
        "sort_order": i,
        "created_at": BASE_TIME.isoformat(),
    }


def offer_row(i: int) -> dict:
    return {
        "id": f"o-{i}",
        "title": f"ঈদ অফার {i}",
        "description": "২০% ছাড়",
        "expiry": (BASE_TIME + timedelta(days=7)).isoformat(),
        "active": True,
        "created_at": BASE_TIME.isoformat(),
    }


def make_products(n: int, category: str = "mugs") -> list[Product]:
    return [Product(**product_row(i, category)) for i in range(n)]


def make_categories() -> list[Category]:
    return [
        Category(**category_row(1, "mugs", "মগ")),
        Category(**category_row(2, "frames", "ফটো ফ্রেম")),
    ]


def make_offers(n: int = 1) -> list[Offer]:
    return [Offer(**offer_row(i)) for i in range(n)]


# ---------------------------------------------------------------------------
# Cache test doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Controllable clock for deterministic cache tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLoader:
    """
    Scriptable origin loader.

    Counts calls, returns ``rows``, raises ``error`` when set, and blocks on
    ``release`` (an asyncio.Event) when one is installed.
    """

    def __init__(self, rows=None):
        self.rows = list(rows or [])
        self.error: Optional[Exception] = None
        self.release: Optional[asyncio.Event] = None
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return list(self.rows)


POLICY = CachePolicy(fresh_ttl=300, stale_ttl=1800, fetch_timeout=1.0)


# ---------------------------------------------------------------------------
# Fake Supabase server
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def fake_supabase():
    """
    A real HTTP server that impersonates the Supabase REST interface.

    Tests configure what the server returns by registering handlers on it.
    """
    server = HTTPServer(host="127.0.0.1")
    server.start()
    yield server
    server.clear()
    if server.is_running():
        server.stop()


@pytest.fixture()
def supabase_url(fake_supabase):
    fake_supabase.clear()
    return f"http://{fake_supabase.host}:{fake_supabase.port}"
