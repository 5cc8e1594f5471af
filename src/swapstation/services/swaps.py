"""Swap execution engine: redeem a confirmation code and exchange batteries."""

import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.orm import Session

from swapstation.config.settings import Settings
from swapstation.db.models.battery import BatteryUnit
from swapstation.db.models.booking import Booking
from swapstation.db.models.enums import BookingStatus, SwapStatus
from swapstation.db.models.swap_transaction import SwapTransaction
from swapstation.db.repositories.booking import BookingRepository
from swapstation.db.repositories.station import VehicleRepository
from swapstation.db.repositories.swap_transaction import SwapTransactionRepository
from swapstation.services.battery_store import BatteryStore
from swapstation.services.codes import is_valid_code
from swapstation.utils.exceptions import ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BatterySnapshot:
    """Battery values read before an exchange touches the unit."""

    battery_id: int
    model: str
    charge_level: float
    state_of_health: float

    @classmethod
    def of(cls, unit: BatteryUnit) -> "BatterySnapshot":
        return cls(unit.id, unit.model, unit.charge_level, unit.state_of_health)


class SwapEngine:
    """Executes the physical exchange behind a confirmation code.

    ``redeem`` performs every write in the caller's session, so the exchange
    either persists completely or not at all.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.clock = clock
        self.bookings = BookingRepository(session)
        self.vehicles = VehicleRepository(session)
        self.transactions = SwapTransactionRepository(session)
        self.store = BatteryStore(session, settings, clock, rng)

    def find_booking(self, code: str) -> Booking:
        """Resolve a confirmation code to a redeemable booking.

        Raises:
            ValidationError: If the code is malformed.
            NotFoundError: If no booking was ever issued the code.
            ConflictError: If the code was already used or its booking is
                not CONFIRMED.
        """
        code = code.strip().upper()
        if not is_valid_code(code):
            raise ValidationError("Malformed confirmation code", details={"code": code})

        booking = self.bookings.get_by_code(code)
        if booking is None:
            spent = self.bookings.get_latest_by_issued_code(code)
            if spent is None:
                raise NotFoundError("Booking with confirmation code", code)
            raise ConflictError(
                f"Confirmation code is no longer valid, booking is {spent.status.value}",
                details={"booking_id": spent.id, "status": spent.status.value},
            )

        if booking.status != BookingStatus.CONFIRMED:
            raise ConflictError(
                f"Booking is {booking.status.value}, expected CONFIRMED",
                details={"booking_id": booking.id, "status": booking.status.value},
            )
        if self.transactions.get_by_booking(booking.id) is not None:
            raise ConflictError(
                "Booking was already redeemed",
                details={"booking_id": booking.id},
            )
        return booking

    def redeem(self, code: str) -> SwapTransaction:
        """Redeem a confirmation code.

        Mounts the reserved battery on the booking's vehicle, returns the
        vehicle's previous battery to the station, writes the transaction
        from values read before the exchange, and completes the booking.
        No swap credit is consumed; that happened at confirmation.

        Args:
            code: Six character confirmation code.

        Returns:
            The persisted swap transaction.

        Raises:
            ValidationError: If the code is malformed or the reserved battery
                does not fit the vehicle.
            NotFoundError: If the code is unknown.
            ConflictError: If the code is spent or the booking has no
                reserved battery.
        """
        booking = self.find_booking(code)
        vehicle = self.vehicles.require(booking.vehicle_id)

        incoming = self.store.batteries.find_reserved_for(booking.id)
        if incoming is None:
            logger.error(
                "Confirmed booking has no reserved battery",
                booking_id=booking.id,
                reserved_battery_id=booking.reserved_battery_id,
            )
            raise ConflictError(
                "No battery is reserved for this booking",
                details={"booking_id": booking.id},
            )
        if incoming.battery_type != vehicle.battery_type:
            raise ValidationError(
                "Reserved battery does not fit the vehicle",
                details={
                    "battery_id": incoming.id,
                    "battery_type": incoming.battery_type,
                    "vehicle_battery_type": vehicle.battery_type,
                },
            )
        outgoing = self.store.batteries.find_mounted_on(vehicle.id)

        start_time = self.clock()
        swap_out = BatterySnapshot.of(incoming)
        swap_in = BatterySnapshot.of(outgoing) if outgoing is not None else None

        # The vehicle can hold one battery, take the old one off first
        if outgoing is not None:
            self.store.unmount_to_station(outgoing, booking.station_id, booking.id)
        self.store.mount(incoming, vehicle.id, booking.id)

        end_time = self.clock()
        transaction = self.transactions.add(
            SwapTransaction(
                driver_id=booking.driver_id,
                vehicle_id=vehicle.id,
                station_id=booking.station_id,
                staff_id=booking.confirmed_by_id,
                booking_id=booking.id,
                swap_out_battery_id=swap_out.battery_id,
                swap_out_battery_model=swap_out.model,
                swap_out_battery_charge_level=swap_out.charge_level,
                swap_out_battery_health=swap_out.state_of_health,
                swap_in_battery_id=swap_in.battery_id if swap_in else None,
                swap_in_battery_model=swap_in.model if swap_in else None,
                swap_in_battery_charge_level=swap_in.charge_level if swap_in else None,
                swap_in_battery_health=swap_in.state_of_health if swap_in else None,
                start_time=start_time,
                end_time=end_time,
                status=SwapStatus.COMPLETED,
            )
        )

        completed = self.bookings.transition(
            booking.id,
            BookingStatus.CONFIRMED,
            BookingStatus.COMPLETED,
            confirmation_code=None,
            completed_at=end_time,
        )
        if not completed:
            raise ConflictError(
                "Booking changed status during redemption",
                details={"booking_id": booking.id},
            )

        logger.info(
            "Swap completed",
            transaction_id=transaction.id,
            booking_id=booking.id,
            vehicle_id=vehicle.id,
            swap_out_battery_id=swap_out.battery_id,
            swap_in_battery_id=swap_in.battery_id if swap_in else None,
        )
        return transaction

    def history_for_vehicle(self, vehicle_id: int) -> list[SwapTransaction]:
        self.vehicles.require(vehicle_id)
        return self.transactions.list_for_vehicle(vehicle_id)

    def history_for_battery(self, battery_id: int) -> list[SwapTransaction]:
        self.store.batteries.require(battery_id)
        return self.transactions.list_for_battery(battery_id)
