"""Tests for settings validation and logging setup."""

import logging

import pytest
from pydantic import ValidationError

from clinic_scheduling.core.config import Settings
from clinic_scheduling.core.logging import run_id_ctx, setup_logging


class TestSettings:

    def test_defaults(self):
        s = Settings(_env_file=None)

        assert s.DEFAULT_SLOT_MINUTES > 0
        assert "+asyncpg" in s.POSTGRES_DSN
        assert s.EVENT_BUS_PROVIDER in {"noop", "redis"}

    def test_dsn_must_use_asyncpg(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, POSTGRES_DSN="postgresql://u:p@localhost/db")

    def test_slot_minutes_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, DEFAULT_SLOT_MINUTES=0)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("RECONCILE_INTERVAL_SECONDS", "5")

        assert Settings(_env_file=None).RECONCILE_INTERVAL_SECONDS == 5.0


class TestLogging:

    def test_records_carry_run_id(self):
        """Should stamp every record with the current run id."""
        setup_logging()
        factory = logging.getLogRecordFactory()
        token = run_id_ctx.set("run-42")
        try:
            record = factory("job.reconcile", logging.INFO, __file__, 1, "msg", None, None)
        finally:
            run_id_ctx.reset(token)

        assert record.run_id == "run-42"
        assert factory("x", logging.INFO, __file__, 1, "msg", None, None).run_id == "-"

    def test_factory_installed_once(self):
        setup_logging()
        first = logging.getLogRecordFactory()
        setup_logging()

        assert logging.getLogRecordFactory() is first
