"""
Tests for Logging Infrastructure
"""
import json
import logging
from io import StringIO

import pytest

from autoleads.core.logging import (
    CorrelationIdFilter,
    JSONFormatter,
    bind_conversation,
    conversation_var,
    correlation_id_var,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    log_async_operation,
    set_correlation_id,
    setup_logging,
)
from autoleads.core.validation import mask_handle


@pytest.fixture
def captured():
    """JSON handler on a dedicated logger, removed afterwards"""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    loggers: list[logging.Logger] = []

    def _attach(name: str, level: int = logging.DEBUG) -> logging.Logger:
        logger = get_logger(name)
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False
        loggers.append(logger)
        return logger

    def _entries() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield _attach, _entries

    for logger in loggers:
        logger.removeHandler(handler)


class TestCorrelationId:

    @pytest.mark.unit
    def test_generated_ids_are_short_and_unique(self):
        first, second = generate_correlation_id(), generate_correlation_id()

        assert len(first) == 8
        assert first != second

    @pytest.mark.unit
    def test_set_without_value_generates(self):
        cid = set_correlation_id(None)

        assert len(cid) == 8
        assert get_correlation_id() == cid

    @pytest.mark.unit
    def test_filter_adds_placeholder(self):
        correlation_id_var.set("")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", (), None)
        # get_correlation_id would generate one; the filter must not
        CorrelationIdFilter().filter(record)

        assert record.correlation_id == "-"


class TestJSONFormatter:

    @pytest.mark.unit
    def test_extra_data_and_correlation_id(self, captured):
        attach, entries = captured
        logger = attach("autoleads.test.intake")
        set_correlation_id("msg00001")

        logger.info(
            "Photo stored",
            extra_data={"tenant_id": 1, "user": mask_handle("6281234567890"), "photos": 3},
        )

        entry = entries()[0]
        assert entry["level"] == "INFO"
        assert entry["message"] == "Photo stored"
        assert entry["correlation_id"] == "msg00001"
        assert entry["extra"] == {"tenant_id": 1, "user": "628123456****", "photos": 3}

    @pytest.mark.unit
    def test_non_ascii_is_kept(self, captured):
        attach, entries = captured
        logger = attach("autoleads.test.unicode")

        logger.warning("Balasan terkirim", extra_data={"reply": "✅ Foto pertama diterima!"})

        assert entries()[0]["extra"]["reply"] == "✅ Foto pertama diterima!"

    @pytest.mark.unit
    def test_exception_is_formatted(self, captured):
        attach, entries = captured
        logger = attach("autoleads.test.exc")

        try:
            raise RuntimeError("insert failed")
        except RuntimeError:
            logger.error("Save failed", extra_data={"code": "#A01"}, exc_info=True)

        entry = entries()[0]
        assert "RuntimeError: insert failed" in entry["exception"]
        assert entry["extra"]["code"] == "#A01"

    @pytest.mark.unit
    def test_level_filtering(self, captured):
        attach, entries = captured
        logger = attach("autoleads.test.level", level=logging.WARNING)

        logger.debug("hidden", extra_data={"a": 1})
        logger.info("hidden too")
        logger.critical("shown")

        assert [entry["message"] for entry in entries()] == ["shown"]


class TestConversationContext:

    @pytest.mark.unit
    def test_bound_conversation_is_logged_masked(self, captured):
        attach, entries = captured
        logger = attach("autoleads.test.conversation")

        with bind_conversation(3, "6281234567890"):
            logger.info("Intake started")
        logger.info("Outside")

        inside, outside = entries()
        assert inside["conversation"] == {"tenant_id": 3, "user": "628123456****"}
        assert "conversation" not in outside

    @pytest.mark.unit
    def test_context_restored_after_error(self):
        with pytest.raises(RuntimeError):
            with bind_conversation(1, "6281234567890"):
                raise RuntimeError("boom")

        assert conversation_var.get() is None

    @pytest.mark.unit
    def test_filter_formats_conversation(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", (), None)
        with bind_conversation(2, "6281234567890"):
            CorrelationIdFilter().filter(record)

        assert record.conversation == "2/628123456****"


class TestLogAsyncOperation:

    @pytest.mark.unit
    async def test_success_logs_completion_with_duration(self, captured):
        attach, entries = captured
        attach(__name__)

        @log_async_operation("vehicle_extraction")
        async def extract():
            return "ok"

        assert await extract() == "ok"

        completed = [entry for entry in entries() if entry["message"] == "vehicle_extraction completed"]
        assert completed[0]["extra"]["operation"] == "vehicle_extraction"
        assert completed[0]["extra"]["duration_seconds"] >= 0

    @pytest.mark.unit
    async def test_failure_is_logged_and_reraised(self, captured):
        attach, entries = captured
        attach(__name__)

        @log_async_operation("listing_copywriting")
        async def enhance():
            raise ValueError("no copy")

        with pytest.raises(ValueError):
            await enhance()

        failed = [entry for entry in entries() if entry["message"] == "listing_copywriting failed"]
        assert failed[0]["extra"]["error"] == "no copy"
        assert "exception" in failed[0]


class TestSetupLogging:

    @pytest.mark.unit
    def test_json_handler_installed(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging("DEBUG", json_format=True)

            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])

    @pytest.mark.unit
    def test_plain_text_handler_has_correlation_filter(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging("INFO", json_format=False)

            assert any(isinstance(f, CorrelationIdFilter) for f in root.handlers[0].filters)
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])
