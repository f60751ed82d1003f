"""
Unit Tests for Service Infrastructure

Tests:
- Settings and CORS configuration
- JSON log formatting and request context
- Sentry event redaction
- Reconciliation table migration

Run with: pytest tests/test_infrastructure.py -v
"""

import json
import logging
import sys
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from pydantic import ValidationError

from config import Settings
from logging_config import JSONFormatter, RequestContextFilter
from migrations.create_reconciliation_tables import SQL_STATEMENTS, create_tables
from sentry_integration import capture_exception, filter_sensitive_data


class TestSettings:
    """Test configuration loading."""

    def test_defaults(self, monkeypatch):
        env_names = (
            "ENVIRONMENT", "RECON_DATE_WINDOW_DAYS", "RECON_BALANCE_TOLERANCE",
            "RECON_SESSION_TTL_MINUTES", "RECON_MAX_SESSIONS"
        )
        for name in env_names:
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.RECON_DATE_WINDOW_DAYS == 3
        assert settings.RECON_BALANCE_TOLERANCE == Decimal("0.01")
        assert settings.RECON_VARIANCE_ALERT_PERCENT == Decimal("10")
        assert settings.RECON_SESSION_TTL_MINUTES == 480
        assert settings.RECON_MAX_SESSIONS == 500
        assert settings.debug_enabled is True

    def test_reconciliation_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("RECON_DATE_WINDOW_DAYS", "5")
        monkeypatch.setenv("RECON_BALANCE_TOLERANCE", "0.50")

        settings = Settings(_env_file=None)

        assert settings.RECON_DATE_WINDOW_DAYS == 5
        assert settings.RECON_BALANCE_TOLERANCE == Decimal("0.50")

    def test_negative_window_rejected(self, monkeypatch):
        monkeypatch.setenv("RECON_DATE_WINDOW_DAYS", "-1")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_cors_origins(self):
        settings = Settings(_env_file=None, ENVIRONMENT="production", CORS_ORIGINS="https://b.example, https://a.example")

        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]

    def test_development_adds_local_origins(self):
        settings = Settings(_env_file=None, ENVIRONMENT="development", CORS_ORIGINS="")

        assert "http://localhost:3000" in settings.cors_origins_list

    def test_production_validation(self):
        """Test that production rejects wildcard CORS and a missing database."""
        settings = Settings(_env_file=None, ENVIRONMENT="production", CORS_ORIGINS="*", DATABASE_URL="")

        errors = settings.validate_production_config()

        assert "DATABASE_URL is required" in errors
        assert "CORS_ORIGINS cannot be '*' in production" in errors


class TestLogging:
    """Test structured logging."""

    def _record(self, **extra):
        record = logging.LogRecord("reconciliation.store", logging.INFO, __file__, 10, "Matched %s", ("e1",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter(self):
        """Test that audit fields are top-level and other extras are nested."""
        record = self._record(session_id="s-1", event="reconciliation.match_created", details={"external_id": "e1"})

        output = json.loads(JSONFormatter(service_name="recon-test").format(record))

        assert output["msg"] == "Matched e1"
        assert output["level"] == "INFO"
        assert output["service"] == "recon-test"
        assert output["session_id"] == "s-1"
        assert output["event"] == "reconciliation.match_created"
        assert output["extra"] == {"details": {"external_id": "e1"}}

    def test_json_formatter_exception(self):
        try:
            raise ValueError("bad amount")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        output = json.loads(JSONFormatter().format(record))

        assert output["error"]["type"] == "ValueError"
        assert "bad amount" in output["error"]["stack"]

    def test_request_context_filter(self):
        context = RequestContextFilter()
        context.set_request_context("req-1", "bookkeeper-1")
        record = self._record()

        assert context.filter(record) is True
        assert record.request_id == "req-1"
        assert record.actor == "bookkeeper-1"

    def test_explicit_actor_kept(self):
        """Test that an audit record's own actor is not overwritten."""
        context = RequestContextFilter()
        context.set_request_context("req-1", "bookkeeper-1")
        record = self._record(actor="system")

        context.filter(record)

        assert record.actor == "system"


class TestSentry:
    """Test Sentry helpers."""

    def test_redacts_api_key_header(self):
        event = {
            "request": {"headers": {"X-Internal-Api-Key": "secret", "Accept": "application/json"}},
            "extra": {"nested": [{"token": "abc", "session_id": "s-1"}]},
        }

        filtered = filter_sensitive_data(event, {})

        assert filtered["request"]["headers"]["X-Internal-Api-Key"] == "[REDACTED]"
        assert filtered["request"]["headers"]["Accept"] == "application/json"
        assert filtered["extra"]["nested"][0] == {"token": "[REDACTED]", "session_id": "s-1"}

    def test_capture_without_init(self):
        assert capture_exception(RuntimeError("boom"), session_id="s-1") is None


class TestMigration:
    """Test reconciliation table migration."""

    @pytest.mark.asyncio
    async def test_create_tables(self):
        conn = MagicMock()
        conn.execute = AsyncMock()
        begin = MagicMock()
        begin.__aenter__ = AsyncMock(return_value=conn)
        begin.__aexit__ = AsyncMock(return_value=False)
        engine = MagicMock()
        engine.begin.return_value = begin

        executed = await create_tables(engine)

        assert executed == len(SQL_STATEMENTS)
        assert conn.execute.await_count == len(SQL_STATEMENTS)
        statements = " ".join(str(call.args[0]) for call in conn.execute.await_args_list)
        assert "bank_transactions" in statements
        assert "ledger_transactions" in statements
