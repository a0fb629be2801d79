"""Application layer: scheduler, jobs and services."""
