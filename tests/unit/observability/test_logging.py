"""Tests for structured logging."""

import json
import logging

from brigade.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    actor_id_var,
    collection_var,
)


def make_record(message: str = "Cache refreshed", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="brigade.cache.polling",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    """Test context variable binding."""

    def test_sets_and_restores(self) -> None:
        assert collection_var.get() == ""
        with LogContext(collection="menu", actor_id="chef-1"):
            assert collection_var.get() == "menu"
            assert actor_id_var.get() == "chef-1"
            with LogContext(collection="stock"):
                assert collection_var.get() == "stock"
            assert collection_var.get() == "menu"
        assert collection_var.get() == ""
        assert actor_id_var.get() == ""


class TestJsonFormatter:
    """Test JSON output."""

    def test_includes_context(self) -> None:
        with LogContext(collection="menu", actor_id="chef-1"):
            payload = json.loads(JsonFormatter().format(make_record()))

        assert payload["message"] == "Cache refreshed"
        assert payload["level"] == "INFO"
        assert payload["collection"] == "menu"
        assert payload["actor_id"] == "chef-1"

    def test_omits_empty_context(self) -> None:
        payload = json.loads(JsonFormatter().format(make_record()))
        assert "collection" not in payload
        assert "actor_id" not in payload

    def test_extra_fields(self) -> None:
        payload = json.loads(JsonFormatter().format(make_record(item_count=3, obj=object())))
        assert payload["item_count"] == 3
        assert isinstance(payload["obj"], str)


class TestConsoleFormatter:
    """Test console output."""

    def test_plain_output(self) -> None:
        with LogContext(collection="stock"):
            line = ConsoleFormatter(use_colors=False).format(make_record())

        assert "| INFO" in line
        assert "brigade.cache.polling" in line
        assert line.endswith("Cache refreshed | col=stock")
