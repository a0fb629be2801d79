"""Observability infrastructure (logging)."""

from tubekeeper.infrastructure.observability.logging import (
    configure_logging,
    get_job_id,
    job_id_var,
)

__all__ = ["configure_logging", "get_job_id", "job_id_var"]
