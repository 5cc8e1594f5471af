"""Repository classes for database operations."""

from swapstation.db.repositories.battery import BatteryRepository
from swapstation.db.repositories.battery_event import BatteryEventRepository
from swapstation.db.repositories.booking import BookingRepository
from swapstation.db.repositories.station import StationRepository, UserRepository, VehicleRepository
from swapstation.db.repositories.subscription import SubscriptionRepository
from swapstation.db.repositories.swap_transaction import SwapTransactionRepository

__all__ = [
    "BatteryEventRepository",
    "BatteryRepository",
    "BookingRepository",
    "StationRepository",
    "SubscriptionRepository",
    "SwapTransactionRepository",
    "UserRepository",
    "VehicleRepository",
]
