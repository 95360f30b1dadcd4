"""
Hardcoded last-resort catalog.

Served only when the origin is unreachable and nothing, not even a stale
payload, is cached. Never stored as a cache entry.
"""

from __future__ import annotations

from storefront.models import Category, Offer, Product

_IMAGE = "https://i.postimg.cc/pT6F3Vzb/download.jpg"

STATIC_PRODUCTS: tuple[Product, ...] = (
    Product(
        id="static-premium-1",
        name="প্রিমিয়াম কাস্টম গিফট বক্স",
        price=1500,
        image_url=_IMAGE,
        category="custom-gifts",
        description="বিশেষ উপলক্ষের জন্য কাস্টমাইজড গিফট বক্স",
        stock=100,
        is_featured=True,
        is_latest=True,
    ),
    Product(
        id="static-lifestyle-1",
        name="এক্সক্লুসিভ লাইফস্টাইল প্রোডাক্ট",
        price=2500,
        image_url=_IMAGE,
        category="lifestyle",
        description="আধুনিক জীবনযাত্রার জন্য প্রয়োজনীয় পণ্য",
        stock=50,
        is_latest=True,
        is_best_selling=True,
    ),
    Product(
        id="static-electronics-1",
        name="স্মার্ট ইলেক্ট্রনিক্স",
        price=5000,
        image_url=_IMAGE,
        category="electronics",
        description="অত্যাধুনিক প্রযুক্তির ইলেকট্রনিক পণ্য",
        stock=25,
        is_featured=True,
        is_best_selling=True,
    ),
)

STATIC_CATEGORIES: tuple[Category, ...] = (
    Category(
        id="static-1",
        name="custom-gifts",
        name_bengali="কাস্টম গিফট",
        description="ব্যক্তিগত উপহার",
        sort_order=1,
    ),
    Category(
        id="static-2",
        name="lifestyle",
        name_bengali="লাইফস্টাইল",
        description="জীবনযাত্রার পণ্য",
        sort_order=2,
    ),
    Category(
        id="static-3",
        name="electronics",
        name_bengali="ইলেক্ট্রনিক্স",
        description="ইলেকট্রনিক পণ্য",
        sort_order=3,
    ),
)

STATIC_OFFERS: tuple[Offer, ...] = ()

_BY_KEY = {
    "products": STATIC_PRODUCTS,
    "categories": STATIC_CATEGORIES,
    "offers": STATIC_OFFERS,
}


def static_fallback(key: str) -> tuple:
    """Return the hardcoded collection for a dataset key (empty if unknown)."""
    return _BY_KEY.get(key, ())
