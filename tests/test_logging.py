"""Tests for the structured logging system (stock_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "stock_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        warehouse_id = uuid4()

        get_logger("test").info(
            "ledger_delta_applied", extra={"warehouse_id": warehouse_id, "delta": -3}
        )

        record = _parse_all_logs(stream)[0]
        assert record["warehouse_id"] == str(warehouse_id)
        assert record["delta"] == -3

    def test_exception_attributes_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise InsufficientStockError(requested=5, available=2, sku="WIDGET-1")
        except InsufficientStockError:
            get_logger("test").error("fulfillment_failed", exc_info=True)

        record = _parse_all_logs(stream)[0]
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_requested"] == 5
        assert record["exc_sku"] == "WIDGET-1"
        assert "traceback" in record


class TestLogContext:
    def test_bind_sets_and_restores(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")

        with LogContext.bind(order_id="o-1", transfer_id=None):
            logger.info("inside")
            with LogContext.bind(order_id="o-2"):
                logger.info("nested")
            logger.info("restored")
        logger.info("outside")

        records = _parse_all_logs(stream)
        assert [r.get("order_id") for r in records] == ["o-1", "o-2", "o-1", None]
        assert all("transfer_id" not in r for r in records)

    def test_bind_rejects_unknown_fields(self):
        with pytest.raises(ValueError, match="trace_id"):
            LogContext.bind(trace_id="t-1")


class TestConfigureLogging:
    def test_second_configure_is_ignored(self):
        first, _ = _make_handler()
        second, _ = _make_handler()

        configure_logging(handler=first)
        configure_logging(handler=second)

        root = logging.getLogger("stock_kernel")
        assert root.handlers.count(first) == 1
        assert second not in root.handlers

    def test_reset_leaves_foreign_handlers_attached(self):
        ours, _ = _make_handler()
        foreign = logging.NullHandler()
        root = logging.getLogger("stock_kernel")
        root.addHandler(foreign)
        try:
            configure_logging(handler=ours)
            reset_logging()

            assert ours not in root.handlers
            assert foreign in root.handlers
        finally:
            root.removeHandler(foreign)
