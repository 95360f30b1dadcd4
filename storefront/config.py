"""
Configuration loading for the storefront API.

Loads non-secret settings from config.yaml, secrets from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DATASETS = ("products", "categories", "offers")


class CachePolicy(BaseModel):
    """Freshness settings for one cached dataset (all values in seconds)."""

    model_config = ConfigDict(extra="forbid")

    fresh_ttl: float = Field(default=300, gt=0)
    stale_ttl: float = Field(
        default=1800, gt=0, description="Total age up to which a payload is still servable"
    )
    fetch_timeout: float = Field(default=3.0, gt=0)

    @model_validator(mode="after")
    def validate_windows(self) -> "CachePolicy":
        if self.stale_ttl <= self.fresh_ttl:
            raise ValueError(
                f"stale_ttl ({self.stale_ttl}) must be greater than fresh_ttl ({self.fresh_ttl})"
            )
        return self


DEFAULT_POLICIES = {
    "products": {"fresh_ttl": 300, "stale_ttl": 1800, "fetch_timeout": 3.0},
    "categories": {"fresh_ttl": 600, "stale_ttl": 1800, "fetch_timeout": 2.0},
    "offers": {"fresh_ttl": 300, "stale_ttl": 1800, "fetch_timeout": 2.0},
}


class AppConfig(BaseModel):
    """Application configuration. Secrets come from env vars, rest from YAML."""

    # Secrets (from environment only)
    supabase_key: Optional[str] = None
    admin_api_key: Optional[str] = None

    # Origin settings
    supabase_url: str = "http://localhost:54321"
    products_limit: int = Field(default=200, ge=1)

    warm_on_startup: bool = True

    # Directory for on-disk dataset snapshots (None disables them)
    snapshot_dir: Optional[str] = None

    # Per-dataset cache policies
    cache: dict[str, CachePolicy] = Field(default_factory=dict, validate_default=True)

    @field_validator("cache", mode="before")
    @classmethod
    def merge_default_policies(cls, value):
        value = value or {}
        unknown = set(value) - set(DATASETS)
        if unknown:
            raise ValueError(f"Unknown cache keys: {sorted(unknown)}")
        merged = {}
        for key in DATASETS:
            override = value.get(key) or {}
            if isinstance(override, CachePolicy):
                override = override.model_dump()
            merged[key] = {**DEFAULT_POLICIES[key], **override}
        return merged

    def policy_for(self, key: str) -> CachePolicy:
        """Look up the cache policy for a dataset key."""
        return self.cache[key]


def load_config(config_path: str | None = None) -> AppConfig:
    """
    Load configuration from YAML file + environment variables.

    Args:
        config_path: Path to config.yaml. If None, reads CONFIG_PATH env var
                     (default: config.yaml in current directory).

    Returns:
        Validated AppConfig instance.
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}

    config_data = {
        **raw,
        # Secrets are injected from the environment, never from YAML
        "supabase_key": os.environ.get("SUPABASE_KEY"),
        "admin_api_key": os.environ.get("ADMIN_API_KEY"),
    }
    supabase_url = os.environ.get("SUPABASE_URL")
    if supabase_url:
        config_data["supabase_url"] = supabase_url

    return AppConfig(**config_data)
