"""Status and role enumerations shared by the ORM models."""

import enum


class BatteryStatus(str, enum.Enum):
    """Lifecycle state of a physical battery unit."""

    AVAILABLE = "AVAILABLE"
    PENDING = "PENDING"  # reserved for a confirmed booking
    IN_USE = "IN_USE"  # mounted on a vehicle
    CHARGING = "CHARGING"
    MAINTENANCE = "MAINTENANCE"


class BookingStatus(str, enum.Enum):
    """Lifecycle state of a booking reservation."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_active(self) -> bool:
        """Active bookings hold their confirmation code."""
        return self in (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class CreditStatus(str, enum.Enum):
    """State of a driver's subscription credit record."""

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"


class SwapStatus(str, enum.Enum):
    """State of a swap transaction record."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class VehicleStatus(str, enum.Enum):
    """Registration state of a vehicle."""

    PENDING = "PENDING"  # awaiting approval
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"
    INACTIVE = "INACTIVE"


class UserRole(str, enum.Enum):
    """Role of an authenticated caller."""

    DRIVER = "DRIVER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class BatteryEventType(str, enum.Enum):
    """Kinds of entries in the battery event log."""

    RESERVED = "RESERVED"
    RELEASED = "RELEASED"
    SWAP_OUT = "SWAP_OUT"
    SWAP_IN = "SWAP_IN"
    CHARGING_START = "CHARGING_START"
    CHARGED = "CHARGED"
    MAINTENANCE_START = "MAINTENANCE_START"
    MAINTENANCE_END = "MAINTENANCE_END"
    SOH_UPDATE = "SOH_UPDATE"
    HEALTH_CHECK = "HEALTH_CHECK"
