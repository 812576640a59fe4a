"""Scheduled background jobs."""

from .aggregation_sweep import register_scheduler, run_sweep_once

__all__ = ["register_scheduler", "run_sweep_once"]
