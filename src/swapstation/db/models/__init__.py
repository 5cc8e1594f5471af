"""ORM models for the swap station engine."""

from swapstation.db.models.battery import BatteryUnit
from swapstation.db.models.battery_event import BatteryEvent
from swapstation.db.models.booking import Booking
from swapstation.db.models.enums import (
    BatteryEventType,
    BatteryStatus,
    BookingStatus,
    CreditStatus,
    SwapStatus,
    UserRole,
    VehicleStatus,
)
from swapstation.db.models.station import Station, User, Vehicle
from swapstation.db.models.subscription import SubscriptionCredit
from swapstation.db.models.swap_transaction import SwapTransaction

__all__ = [
    "BatteryEvent",
    "BatteryEventType",
    "BatteryStatus",
    "BatteryUnit",
    "Booking",
    "BookingStatus",
    "CreditStatus",
    "Station",
    "SubscriptionCredit",
    "SwapStatus",
    "SwapTransaction",
    "User",
    "UserRole",
    "Vehicle",
    "VehicleStatus",
]
