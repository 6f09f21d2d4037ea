"""Tests for settings and component wiring."""

import pytest

from arrow_ledger.config import AppSettings, LedgerSettings, get_settings, validate_all_settings
from arrow_ledger.errors import Conflict, ValidationError
from arrow_ledger.ledger import LedgerService
from arrow_ledger.orchestrator import create_app_components, create_storage
from arrow_ledger.services.storage import InMemoryAuditStorage, InMemoryTransactionStorage


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:

    def test_ledger_defaults(self, monkeypatch):
        monkeypatch.delenv("LEDGER_STORAGE_BACKEND", raising=False)
        settings = LedgerSettings()
        assert settings.storage_backend == "memory"
        assert settings.default_page_size == 100
        assert settings.max_page_size == 500

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("LEDGER_MAX_PAGE_SIZE", "25")
        assert LedgerSettings().max_page_size == 25

    def test_unknown_backend_rejected(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORAGE_BACKEND", "postgres")
        with pytest.raises(ValueError):
            LedgerSettings()

    def test_log_level_normalized(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", " debug ")
        assert AppSettings().log_level == "DEBUG"

    def test_debug_mode_forces_debug_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        monkeypatch.setenv("DEBUG_MODE", "true")
        assert AppSettings().effective_log_level == "DEBUG"

    def test_effective_level_defaults_to_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        monkeypatch.delenv("DEBUG_MODE", raising=False)
        assert AppSettings().effective_log_level == "WARNING"

    def test_bad_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        with pytest.raises(ValueError):
            AppSettings()

    def test_validate_all_settings_memory_backend(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORAGE_BACKEND", "memory")
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        results = validate_all_settings()
        assert results["ledger"] is True
        assert results["app"] is True
        assert "google_sheets" not in results


class TestWiring:

    def test_memory_backend(self):
        transactions, audit = create_storage("memory")
        assert isinstance(transactions, InMemoryTransactionStorage)
        assert isinstance(audit, InMemoryAuditStorage)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage("floppy")

    def test_create_app_components(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        service, audit_logger = create_app_components("memory")
        assert isinstance(service, LedgerService)
        assert audit_logger.pending == 0


class TestErrorBodies:

    def test_validation_body(self):
        body = ValidationError("Invalid category").to_dict()
        assert body == {"error": {"code": "VALIDATION", "message": "Invalid category"}}

    def test_conflict_body_carries_current_order(self):
        error = Conflict("Ordering changed", current_order=[])
        assert error.status == 409
        assert error.to_dict()["error"]["currentOrder"] == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
