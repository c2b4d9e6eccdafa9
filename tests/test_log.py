"""Tests for logging configuration."""

from __future__ import annotations

import io
import json
import logging
from typing import TYPE_CHECKING

import pytest
import structlog

from agentstream.log import LOGGER_NAMESPACES, configure_logging, get_logger


if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def output() -> Iterator[io.StringIO]:
    stream = io.StringIO()
    yield stream
    for namespace in LOGGER_NAMESPACES:
        package_logger = logging.getLogger(namespace)
        package_logger.handlers = []
        package_logger.setLevel(logging.NOTSET)
        package_logger.propagate = True
    structlog.reset_defaults()


class TestLogging:
    """Tests for configure_logging and get_logger."""

    def test_json_output(self, output: io.StringIO) -> None:
        configure_logging("INFO", json_logs=True, stream=output)
        get_logger("agentstream.readiness").info("Server connected", server="github", tools=3)

        record = json.loads(output.getvalue().strip())
        assert record["event"] == "Server connected"
        assert record["server"] == "github"
        assert record["tools"] == 3  # noqa: PLR2004
        assert record["level"] == "info"
        assert record["logger"] == "agentstream.readiness"

    def test_loggers_kept_under_package_namespaces(self, output: io.StringIO) -> None:
        configure_logging("INFO", json_logs=True, stream=output)
        get_logger("agentstream_config.servers").info("a")
        get_logger("helpers").info("b")

        lines = output.getvalue().strip().splitlines()
        names = [json.loads(line)["logger"] for line in lines]
        assert names == ["agentstream_config.servers", "agentstream.helpers"]

    def test_level_filters(self, output: io.StringIO) -> None:
        configure_logging("WARNING", json_logs=True, stream=output)
        logger = get_logger("agentstream.sessions")
        logger.info("hidden")
        logger.warning("shown")

        lines = output.getvalue().strip().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["shown"]

    def test_root_logger_untouched(self, output: io.StringIO) -> None:
        root_handlers = list(logging.getLogger().handlers)
        configure_logging(stream=output)
        assert logging.getLogger().handlers == root_handlers
        assert not logging.getLogger("agentstream").propagate

    def test_unknown_level(self, output: io.StringIO) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging("LOUD", stream=output)
