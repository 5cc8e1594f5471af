"""Periodic reconciliation of bookings, batteries and registrations."""

from swapstation.scheduler.runner import ReconciliationScheduler

__all__ = ["ReconciliationScheduler"]
