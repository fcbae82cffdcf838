"""Runtime utilities for sharing scheduler and scanner state across components."""
from __future__ import annotations

from typing import Optional

from apscheduler.job import Job
from apscheduler.triggers.interval import IntervalTrigger

from services.scanner import Scanner

_autoscan_job: Optional[Job] = None
_scanner: Optional[Scanner] = None


def configure_autoscan_job(autoscan_job: Job) -> None:
    """Register the autoscan job for later access."""
    global _autoscan_job
    _autoscan_job = autoscan_job


def configure_scanner(scanner: Scanner) -> None:
    global _scanner
    _scanner = scanner


def update_autoscan_interval(minutes: int) -> None:
    """Update autoscan job interval if the scheduler has been configured."""
    if minutes <= 0:
        raise ValueError("Интервал должен быть положительным")

    if _autoscan_job is None:
        return

    trigger = IntervalTrigger(minutes=minutes)
    _autoscan_job.reschedule(trigger=trigger)


def get_autoscan_job() -> Optional[Job]:
    return _autoscan_job


def get_scanner() -> Scanner:
    if _scanner is None:
        raise RuntimeError("Scanner is not configured")
    return _scanner
