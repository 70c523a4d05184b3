"""Tests for the per-run logging context."""

import structlog

from supplier_sync.observability import bind_run_context, clear_run_context, get_run_logger


class TestRunContext:
    """Tests for binding recipe context to logs."""

    def test_bind_and_clear(self):
        """Bound supplier and version are visible until cleared."""
        bind_run_context("Acme", "1.2.0")
        try:
            assert structlog.contextvars.get_contextvars() == {"supplier": "Acme", "recipe_version": "1.2.0"}
        finally:
            clear_run_context()

        assert structlog.contextvars.get_contextvars() == {}

    def test_get_run_logger(self):
        assert get_run_logger() is not None
