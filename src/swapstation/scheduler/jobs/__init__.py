"""Reconciliation jobs."""

from swapstation.scheduler.jobs.approval_timeout import ApprovalTimeoutSweep
from swapstation.scheduler.jobs.auto_charge import AutoChargeSweep
from swapstation.scheduler.jobs.base import BaseSweepJob
from swapstation.scheduler.jobs.booking_expiry import BookingExpirySweep
from swapstation.scheduler.jobs.health import HealthCheckSweep

ALL_JOBS: list[type[BaseSweepJob]] = [
    BookingExpirySweep,
    AutoChargeSweep,
    HealthCheckSweep,
    ApprovalTimeoutSweep,
]

__all__ = [
    "ALL_JOBS",
    "ApprovalTimeoutSweep",
    "AutoChargeSweep",
    "BaseSweepJob",
    "BookingExpirySweep",
    "HealthCheckSweep",
]
