"""Logging configuration with JSON formatting and job ids."""

import contextvars
import logging
import sys
import traceback
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

# Hey future me, the Scheduler sets this for the duration of one job run. Every log line written
# while the job runs (including from repositories, providers, httpx hooks) then carries the job
# id, so "why did last night's sync fail" is a single grep. contextvars are asyncio-safe: each
# worker task has its own value. Default "" covers startup logs and code outside jobs.
job_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("job_id", default="")


def get_job_id() -> str:
    """Get the id of the job running in the current context ("" outside jobs)."""
    return job_id_var.get()


# Yo, this filter INJECTS job_id into every record so formatters can use %(job_id)s. Must
# return True or the record is dropped. Runs for every log call, keep it trivial.
class JobIdFilter(logging.Filter):
    """Add the current job id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = get_job_id()
        return True


class CompactExceptionFormatter(logging.Formatter):
    """Human-readable formatter with compact exception chains.

    Each exception of the chain gets one `╰─►` header line followed by the
    frames from our own package only; library frames are skipped.

    Example output:
    ERROR   │ [download-video-12] tubekeeper.jobs.DownloadJob:88 │ Download failed
    ╰─► MediaDownloadError: HTTP Error 403: Forbidden
        File "ytdlp_downloader.py", line 61, in _download_blocking
          ydl.download([video_url])
    """

    def format(self, record: logging.LogRecord) -> str:
        job_id = getattr(record, "job_id", "")
        record.job_prefix = f"[{job_id}] " if job_id else ""
        return super().format(record)

    def formatException(self, ei: Any) -> str:
        _, exc_value, _ = ei
        if exc_value is None:
            return ""

        # Root cause first
        chain: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in chain:
            chain.append(current)
            current = current.__cause__ or current.__context__
        chain.reverse()

        lines: list[str] = []
        for exc in chain:
            lines.append(f"╰─► {exc.__class__.__name__}: {exc}")
            if exc.__traceback__ is None:
                continue
            for frame in traceback.extract_tb(exc.__traceback__):
                if "/site-packages/" in frame.filename or "tubekeeper" not in frame.filename:
                    continue
                lines.append(
                    f'    File "{Path(frame.filename).name}", line {frame.lineno}, in {frame.name}'
                )
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")

        return "\n".join(lines)


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[name-defined,misc]
    """JSON formatter with the fields our log pipeline expects."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        job_id = getattr(record, "job_id", "")
        if job_id:
            log_record["job_id"] = job_id

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)


# Listen future me, call this ONCE at startup (app_lifespan does). It replaces the handlers of the
# root logger, which keeps repeated calls in tests from stacking handlers. yt-dlp and httpx are
# chatty, their loggers get bumped to WARNING.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "tubekeeper",
) -> None:
    """Configure root logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON lines instead of the human-readable format
        app_name: Application name included in the startup log
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(JobIdFilter())

    formatter: logging.Formatter
    if json_format:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(job_prefix)s%(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "asyncio", "aiosqlite", "yt_dlp"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"app_name": app_name, "log_level": log_level, "json_format": json_format},
    )
