"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from rolematrix.config import Settings


class TestDefaults:
    def test_defaults(self, monkeypatch):
        for name in ("RM_STORAGE", "RM_LOG_FORMAT", "RM_LOG_LEVEL", "RM_LIMITED_ACCESS_THRESHOLD"):
            monkeypatch.delenv(name, raising=False)
        s = Settings()
        assert s.storage == "memory"
        assert s.log_format == "text"
        assert s.log_level == "INFO"
        assert s.limited_access_threshold == 3
        assert s.navigation_feature == "navigation"
        assert (s.role_name_min_length, s.role_name_max_length) == (3, 50)
        assert s.role_description_max_length == 255


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("RM_STORAGE", "SQLite")
        monkeypatch.setenv("RM_DB_PATH", "/tmp/matrix.db")
        monkeypatch.setenv("RM_BULK_IMPACT_WARNING_THRESHOLD", "10")
        s = Settings()
        assert s.storage == "sqlite"
        assert s.db_path == "/tmp/matrix.db"
        assert s.bulk_impact_warning_threshold == 10

    def test_log_level_normalized(self, monkeypatch):
        monkeypatch.setenv("RM_LOG_LEVEL", "debug")
        assert Settings().log_level == "DEBUG"

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("RM_STORAGE", "postgres"),
            ("RM_LOG_FORMAT", "xml"),
            ("RM_LOG_LEVEL", "LOUD"),
            ("RM_LIMITED_ACCESS_THRESHOLD", "-1"),
        ],
    )
    def test_invalid_values_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValidationError):
            Settings()

    def test_name_bounds_must_be_ordered(self):
        with pytest.raises(ValidationError, match="must not exceed"):
            Settings(role_name_min_length=10, role_name_max_length=5)

    def test_custom_bounds_drive_role_validation(self, service):
        service.catalog.config = Settings(role_name_min_length=1)
        assert service.catalog.validate_role_data("QA", "Quality", ["expense_read"]) == []
