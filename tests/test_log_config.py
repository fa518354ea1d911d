"""Tests for structured logging setup."""

from structlog.testing import capture_logs

from clawkeeper.log_config import _render_exc, configure_logging, get_logger


class TestGetLogger:
    def test_logger_created_before_configuration_emits(self):
        log = get_logger("unit", service="tests")
        configure_logging()

        with capture_logs() as logs:
            log.info("unit.event", attempt=1)

        assert len(logs) == 1
        assert logs[0]["event"] == "unit.event"
        assert logs[0]["logger_name"] == "unit"
        assert logs[0]["service"] == "tests"
        assert logs[0]["attempt"] == 1

    def test_bind_adds_context(self):
        with capture_logs() as logs:
            get_logger("unit").bind(process_id="proc-1").warn("unit.warned")

        assert logs[0]["event"] == "unit.warned"
        assert logs[0]["process_id"] == "proc-1"


class TestExceptionRendering:
    def test_exc_is_expanded(self):
        event = _render_exc(None, "error", {"event": "x", "exc": ValueError("boom")})

        assert event == {"event": "x", "error_type": "ValueError", "error": "boom"}

    def test_without_exc_is_untouched(self):
        assert _render_exc(None, "info", {"event": "x"}) == {"event": "x"}
