"""Tests for config loading."""

import pytest
from pydantic import ValidationError

from storefront.config import AppConfig, CachePolicy, load_config


@pytest.fixture()
def valid_config_yaml(tmp_path):
    """Write a minimal valid config.yaml and return its path."""
    content = """\
supabase_url: "http://db.example:54321"
products_limit: 50
warm_on_startup: false

cache:
  products:
    fresh_ttl: 180
    stale_ttl: 900
    fetch_timeout: 5
"""
    p = tmp_path / "config.yaml"
    p.write_text(content)
    return str(p)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("SUPABASE_KEY", "ADMIN_API_KEY", "SUPABASE_URL", "CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    def test_loads_valid_config(self, valid_config_yaml):
        config = load_config(valid_config_yaml)
        assert config.supabase_url == "http://db.example:54321"
        assert config.products_limit == 50
        assert config.warm_on_startup is False
        products = config.policy_for("products")
        assert products.fresh_ttl == 180
        assert products.stale_ttl == 900
        assert products.fetch_timeout == 5

    def test_unlisted_datasets_keep_defaults(self, valid_config_yaml):
        config = load_config(valid_config_yaml)
        categories = config.policy_for("categories")
        assert categories.fresh_ttl == 600
        assert categories.stale_ttl == 1800
        assert categories.fetch_timeout == 2.0
        assert set(config.cache) == {"products", "categories", "offers"}

    def test_partial_policy_override_merges(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("cache:\n  offers:\n    fresh_ttl: 60\n")
        config = load_config(str(p))
        offers = config.policy_for("offers")
        assert offers.fresh_ttl == 60
        assert offers.stale_ttl == 1800

    def test_empty_file_uses_defaults(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("")
        config = load_config(str(p))
        assert config.supabase_url == "http://localhost:54321"
        assert config.products_limit == 200
        assert config.warm_on_startup is True
        assert config.policy_for("products").fresh_ttl == 300

    def test_env_overrides_secrets(self, valid_config_yaml, monkeypatch):
        monkeypatch.setenv("SUPABASE_KEY", "service-key")
        monkeypatch.setenv("ADMIN_API_KEY", "admin-secret")
        config = load_config(valid_config_yaml)
        assert config.supabase_key == "service-key"
        assert config.admin_api_key == "admin-secret"

    def test_secrets_never_read_from_yaml(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text('admin_api_key: "from-yaml"\nsupabase_key: "from-yaml"\n')
        config = load_config(str(p))
        assert config.admin_api_key is None
        assert config.supabase_key is None

    def test_supabase_url_env_override(self, valid_config_yaml, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "http://env-host:1234")
        config = load_config(valid_config_yaml)
        assert config.supabase_url == "http://env-host:1234"

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_config_path_from_env(self, valid_config_yaml, monkeypatch):
        monkeypatch.setenv("CONFIG_PATH", valid_config_yaml)
        config = load_config()
        assert config.products_limit == 50

    def test_unknown_cache_key_raises(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("cache:\n  orders:\n    fresh_ttl: 10\n")
        with pytest.raises(ValidationError, match="Unknown cache keys"):
            load_config(str(p))

    def test_stale_ttl_must_exceed_fresh_ttl(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("cache:\n  products:\n    fresh_ttl: 600\n    stale_ttl: 300\n")
        with pytest.raises(ValidationError, match="stale_ttl"):
            load_config(str(p))

    def test_unknown_policy_field_raises(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("cache:\n  products:\n    ttl: 60\n")
        with pytest.raises(ValidationError):
            load_config(str(p))

    def test_non_positive_timeout_raises(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("cache:\n  products:\n    fetch_timeout: 0\n")
        with pytest.raises(ValidationError):
            load_config(str(p))


class TestCachePolicy:
    def test_defaults(self):
        policy = CachePolicy()
        assert policy.fresh_ttl == 300
        assert policy.stale_ttl == 1800
        assert policy.fetch_timeout == 3.0

    def test_app_config_without_yaml(self):
        config = AppConfig()
        assert config.policy_for("categories").fresh_ttl == 600

    def test_snapshot_dir(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text('snapshot_dir: "/var/cache/storefront"\n')
        assert load_config(str(p)).snapshot_dir == "/var/cache/storefront"
        assert AppConfig().snapshot_dir is None
