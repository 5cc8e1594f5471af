"""Domain services: battery store, credit ledger, bookings and swaps."""

from swapstation.services.battery_store import BatteryStore, HealthBand, select_battery
from swapstation.services.bookings import BookingManager
from swapstation.services.identity import Identity
from swapstation.services.ledger import CreditLedger
from swapstation.services.notifications import Notifier, Outbox, build_notifier, notify_safely
from swapstation.services.swaps import SwapEngine

__all__ = [
    "BatteryStore",
    "BookingManager",
    "CreditLedger",
    "HealthBand",
    "Identity",
    "Notifier",
    "Outbox",
    "SwapEngine",
    "build_notifier",
    "notify_safely",
    "select_battery",
]
