"""Tests for database URL handling."""

import pytest

from class_reminders.database import get_async_database_url, get_sync_database_url


class TestDatabaseUrls:
    @pytest.mark.parametrize(
        "url",
        [
            "postgresql://u:p@db:5432/app",
            "postgres://u:p@db:5432/app",
            "postgresql+asyncpg://u:p@db:5432/app",
        ],
    )
    def test_driver_variants(self, monkeypatch, url):
        monkeypatch.setenv("DATABASE_URL", url)

        assert get_async_database_url() == "postgresql+asyncpg://u:p@db:5432/app"
        assert get_sync_database_url() == "postgresql://u:p@db:5432/app"

    def test_missing(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ValueError, match="must be set"):
            get_async_database_url()

    def test_not_postgres(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///reminders.db")

        with pytest.raises(ValueError, match="'sqlite'"):
            get_sync_database_url()
