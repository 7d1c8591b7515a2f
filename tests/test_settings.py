"""Tests for redular.settings — RedularSettings and the cached loader."""

import pytest
from pydantic import ValidationError

from redular.settings import RedularSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_defaults(self):
        s = RedularSettings()
        assert s.id is None
        assert s.auto_config is False
        assert s.data_expiry == 30
        assert s.redis_host == "127.0.0.1"
        assert s.redis_port == 6379
        assert s.redis_db == 0

    def test_connection_url_from_fields(self):
        s = RedularSettings(redis_host="myhost", redis_port=6380, redis_db=2)
        assert s.connection_url == "redis://myhost:6380/2"

    def test_connection_url_with_password(self):
        s = RedularSettings(redis_host="myhost", redis_password="my pass")
        assert s.connection_url == "redis://:my%20pass@myhost:6379/0"

    def test_redis_url_overrides_fields(self):
        s = RedularSettings(redis_url="redis://cache:7000/5", redis_host="ignored")
        assert s.connection_url == "redis://cache:7000/5"

    def test_negative_data_expiry_rejected(self):
        with pytest.raises(ValidationError):
            RedularSettings(data_expiry=-1)


class TestEnvOverride:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("REDULAR_REDIS_HOST", "cache.internal")
        monkeypatch.setenv("REDULAR_AUTO_CONFIG", "true")
        monkeypatch.setenv("REDULAR_DATA_EXPIRY", "60")
        s = RedularSettings()
        assert s.redis_host == "cache.internal"
        assert s.auto_config is True
        assert s.data_expiry == 60

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("REDULAR_ID=worker-1\n")
        assert RedularSettings().id == "worker-1"


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_clear_cache(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("REDULAR_REDIS_PORT", "7001")
        assert get_settings().redis_port == first.redis_port
        clear_settings_cache()
        assert get_settings().redis_port == 7001

    def test_force_reload(self, monkeypatch):
        get_settings()
        monkeypatch.setenv("REDULAR_REDIS_DB", "4")
        assert get_settings(_force_reload=True).redis_db == 4


class TestDatabase:
    def test_from_field(self):
        assert RedularSettings(redis_db=2).database == 2

    def test_from_url_path(self):
        s = RedularSettings(redis_url="redis://localhost:6379/3", redis_db=0)
        assert s.database == 3

    def test_url_without_db_is_zero(self):
        assert RedularSettings(redis_url="redis://localhost:6379", redis_db=5).database == 0
