"""Tests for structured logging."""

import asyncio
import json
import logging
from collections.abc import Iterator

import pytest

from tubekeeper.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CustomJsonFormatter,
    JobIdFilter,
    configure_logging,
    get_job_id,
    job_id_var,
)


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """configure_logging() replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg: str = "hello", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord("tubekeeper.test", logging.ERROR, __file__, 10, msg, None, exc_info)


class TestJobId:
    """Test job id context handling."""

    def test_default_is_empty(self) -> None:
        """Outside of a job there is no job id."""
        assert get_job_id() == ""

    def test_set_and_reset(self) -> None:
        token = job_id_var.set("download-video-1")
        try:
            assert get_job_id() == "download-video-1"
        finally:
            job_id_var.reset(token)
        assert get_job_id() == ""

    async def test_tasks_have_their_own_job_id(self) -> None:
        """Two concurrent tasks never see each other's job id."""

        async def run(job_id: str) -> str:
            job_id_var.set(job_id)
            await asyncio.sleep(0)
            return get_job_id()

        assert await asyncio.gather(run("a"), run("b")) == ["a", "b"]

    def test_filter_adds_job_id(self) -> None:
        record = _record()
        token = job_id_var.set("sync-1")
        try:
            assert JobIdFilter().filter(record) is True
        finally:
            job_id_var.reset(token)
        assert record.job_id == "sync-1"


class TestFormatters:
    """Test the text and JSON formatters."""

    def test_text_format_prefixes_job_id(self) -> None:
        formatter = CompactExceptionFormatter(fmt="%(job_prefix)s%(message)s")
        record = _record()
        record.job_id = "sync-1"
        assert formatter.format(record) == "[sync-1] hello"

    def test_exception_chain_root_cause_first(self) -> None:
        try:
            try:
                raise KeyError("inner")
            except KeyError as e:
                raise RuntimeError("outer") from e
        except RuntimeError as e:
            text = CompactExceptionFormatter().formatException((type(e), e, e.__traceback__))

        lines = [line for line in text.splitlines() if line.startswith("╰─►")]
        assert lines == ["╰─► KeyError: 'inner'", "╰─► RuntimeError: outer"]

    def test_json_format_contains_fields(self) -> None:
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = _record()
        record.job_id = "sync-1"

        data = json.loads(formatter.format(record))

        assert data["message"] == "hello"
        assert data["level"] == "ERROR"
        assert data["logger"] == "tubekeeper.test"
        assert data["job_id"] == "sync-1"


@pytest.mark.usefixtures("restore_root_logger")
class TestLoggingConfiguration:
    """Test logging configuration."""

    def test_configure_logging_debug_level(self) -> None:
        """Test configuring logging with DEBUG level."""
        configure_logging(log_level="DEBUG", json_format=False, app_name="test-app")
        logger = logging.getLogger("test")
        assert logger.getEffectiveLevel() <= logging.DEBUG

    def test_configure_logging_info_level(self) -> None:
        """Test configuring logging with INFO level."""
        configure_logging(log_level="INFO", json_format=False, app_name="test-app")
        logger = logging.getLogger("test")
        assert logger.getEffectiveLevel() == logging.INFO

    def test_configure_logging_json_format(self) -> None:
        """Test configuring logging with JSON format."""
        configure_logging(log_level="INFO", json_format=True, app_name="test-app")
        root_logger = logging.getLogger()
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, CustomJsonFormatter)

    def test_repeated_configuration_does_not_stack_handlers(self) -> None:
        configure_logging(log_level="INFO")
        configure_logging(log_level="INFO")
        assert len(logging.getLogger().handlers) == 1

    def test_noisy_libraries_quieted(self) -> None:
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("yt_dlp").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
