"""Booking reservation manager."""

import random
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy.orm import Session

from swapstation.config.settings import Settings
from swapstation.db.models.booking import Booking
from swapstation.db.models.enums import BookingStatus, VehicleStatus
from swapstation.db.repositories.booking import BookingRepository
from swapstation.db.repositories.station import StationRepository, UserRepository, VehicleRepository
from swapstation.services.battery_store import BatteryStore
from swapstation.services.codes import generate_unique_code
from swapstation.services.identity import Identity
from swapstation.services.ledger import CreditLedger
from swapstation.services.notifications import (
    BOOKING_AUTO_CANCELLED,
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    Outbox,
)
from swapstation.utils.exceptions import AccessDeniedError, ConflictError, ValidationError

logger = structlog.get_logger(__name__)


class BookingManager:
    """Creates and advances booking reservations.

    All work happens in the caller's session; the caller owns the
    transaction boundary. Notifications are queued on ``outbox`` and must be
    flushed after commit.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
        outbox: Outbox | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            session: Database session of the current transaction.
            settings: Application settings.
            clock: Source of the current time.
            rng: Random source for confirmation codes.
            outbox: Queue for notifications produced by the operations.
        """
        self.session = session
        self.settings = settings
        self.clock = clock
        self.rng = rng
        self.outbox = outbox if outbox is not None else Outbox()
        self.bookings = BookingRepository(session)
        self.vehicles = VehicleRepository(session)
        self.stations = StationRepository(session)
        self.users = UserRepository(session)
        self.ledger = CreditLedger(session, clock)
        self.store = BatteryStore(session, settings, clock)

    def create(self, actor: Identity, vehicle_id: int, station_id: int) -> Booking:
        """Create a PENDING booking for one of the driver's vehicles.

        Raises:
            AccessDeniedError: If the actor is not a driver.
            NotFoundError: If the vehicle or station does not exist.
            ValidationError: If the vehicle is not the driver's, is not
                active, or needs a battery type the station does not stock.
        """
        actor.require_driver()
        vehicle = self.vehicles.require(vehicle_id)
        station = self.stations.require(station_id)

        if vehicle.driver_id != actor.user_id:
            raise ValidationError(
                "Vehicle does not belong to the driver",
                details={"vehicle_id": vehicle_id, "driver_id": actor.user_id},
            )
        if vehicle.status != VehicleStatus.ACTIVE:
            raise ValidationError(
                "Vehicle registration is not active",
                details={"vehicle_id": vehicle_id, "status": vehicle.status.value},
            )
        if station.battery_type != vehicle.battery_type:
            raise ValidationError(
                "Station does not stock the vehicle's battery type",
                details={
                    "station_id": station_id,
                    "station_battery_type": station.battery_type,
                    "vehicle_battery_type": vehicle.battery_type,
                },
            )

        booking = self.bookings.add(
            Booking(
                driver_id=actor.user_id,
                vehicle_id=vehicle_id,
                station_id=station_id,
                status=BookingStatus.PENDING,
            )
        )
        logger.info(
            "Booking created",
            booking_id=booking.id,
            driver_id=actor.user_id,
            vehicle_id=vehicle_id,
            station_id=station_id,
        )
        return booking

    def confirm(self, booking_id: int, staff: Identity) -> Booking:
        """Confirm a PENDING booking.

        Consumes one swap credit from the driver, reserves the best eligible
        battery at the station and issues a confirmation code valid until the
        reservation expires.

        Args:
            booking_id: Booking to confirm.
            staff: Confirming staff member or administrator.

        Returns:
            The CONFIRMED booking.

        Raises:
            AccessDeniedError: If the actor is not staff.
            NotFoundError: If the booking does not exist.
            ConflictError: If the booking is not PENDING, the driver has no
                credit, or no battery can be reserved.
            ExhaustedError: If no unused confirmation code could be drawn.
        """
        staff.require_staff()
        booking = self.bookings.require(booking_id)
        self._require_status(booking, BookingStatus.PENDING)

        vehicle = self.vehicles.require(booking.vehicle_id)
        credit = self.ledger.consume_one(booking.driver_id)

        now = self.clock()
        expiry = now + timedelta(hours=self.settings.reservation_hours)
        battery = self.store.reserve_for_booking(
            booking.id,
            booking.station_id,
            vehicle.battery_type,
            expiry,
            actor_id=staff.user_id,
        )
        code = generate_unique_code(
            self.bookings.code_in_use,
            max_attempts=self.settings.code_max_attempts,
            rng=self.rng,
        )

        moved = self.bookings.transition(
            booking.id,
            BookingStatus.PENDING,
            BookingStatus.CONFIRMED,
            confirmation_code=code,
            issued_code=code,
            reserved_battery_id=battery.id,
            reservation_expiry=expiry,
            confirmed_by_id=staff.user_id,
            confirmed_at=now,
        )
        if not moved:
            raise ConflictError(
                "Booking changed status during confirmation",
                details={"booking_id": booking.id},
            )

        logger.info(
            "Booking confirmed",
            booking_id=booking.id,
            battery_id=battery.id,
            staff_id=staff.user_id,
            expires_at=expiry.isoformat(),
            remaining_swaps=credit.remaining_swaps,
        )
        self._notify_driver(
            booking,
            BOOKING_CONFIRMED,
            confirmation_code=code,
            station_id=booking.station_id,
            battery_id=battery.id,
            expires_at=expiry.isoformat(),
        )
        return booking

    def cancel(self, booking_id: int, actor: Identity) -> Booking:
        """Cancel a booking that has not been confirmed yet.

        The owning driver or any staff member may cancel.

        Raises:
            NotFoundError: If the booking does not exist.
            AccessDeniedError: If a driver cancels someone else's booking.
            ConflictError: If the booking is not PENDING.
        """
        booking = self.bookings.require(booking_id)
        self._require_access(booking, actor)
        self._require_status(booking, BookingStatus.PENDING)

        moved = self.bookings.transition(
            booking.id,
            BookingStatus.PENDING,
            BookingStatus.CANCELLED,
            cancelled_at=self.clock(),
            cancellation_reason="cancelled by driver" if actor.is_driver else "cancelled by staff",
        )
        if not moved:
            raise ConflictError(
                "Booking changed status during cancellation",
                details={"booking_id": booking.id},
            )
        logger.info("Booking cancelled", booking_id=booking.id, actor_id=actor.user_id)
        return booking

    def force_cancel(self, booking_id: int, actor: Identity, reason: str | None = None) -> Booking:
        """Cancel a PENDING or CONFIRMED booking on behalf of the station.

        A reserved battery goes back to AVAILABLE. The swap credit consumed
        at confirmation is not refunded.

        Raises:
            AccessDeniedError: If the actor is not staff.
            NotFoundError: If the booking does not exist.
            ConflictError: If the booking is already COMPLETED or CANCELLED.
        """
        actor.require_staff()
        booking = self.bookings.require(booking_id)
        previous = booking.status
        if not previous.is_active:
            raise ConflictError(
                f"Booking is already {previous.value}",
                details={"booking_id": booking.id, "status": previous.value},
            )

        moved = self.bookings.transition(
            booking.id,
            previous,
            BookingStatus.CANCELLED,
            confirmation_code=None,
            cancelled_at=self.clock(),
            cancellation_reason=reason or "cancelled by staff",
        )
        if not moved:
            raise ConflictError(
                "Booking changed status during cancellation",
                details={"booking_id": booking.id},
            )

        if previous == BookingStatus.CONFIRMED:
            battery = self.store.batteries.find_reserved_for(booking.id)
            if battery is not None:
                self.store.release(battery, "booking cancelled by staff", actor_id=actor.user_id)

        logger.info(
            "Booking force cancelled",
            booking_id=booking.id,
            previous_status=previous.value,
            actor_id=actor.user_id,
        )
        self._notify_driver(booking, BOOKING_CANCELLED, reason=booking.cancellation_reason)
        return booking

    def expire(self, booking: Booking) -> bool:
        """Cancel a CONFIRMED booking whose reservation ran out.

        The swap credit was already consumed at confirmation and is kept as
        the no-show penalty.

        Returns:
            False if the booking was no longer CONFIRMED.
        """
        if booking.status != BookingStatus.CONFIRMED:
            return False
        code = booking.confirmation_code
        moved = self.bookings.transition(
            booking.id,
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
            confirmation_code=None,
            cancelled_at=self.clock(),
            cancellation_reason="reservation expired",
        )
        if moved:
            logger.info("Booking expired", booking_id=booking.id, driver_id=booking.driver_id)
            self._notify_driver(
                booking,
                BOOKING_AUTO_CANCELLED,
                confirmation_code=code,
                station_id=booking.station_id,
            )
        return moved

    def get(self, booking_id: int, actor: Identity) -> Booking:
        """Read one booking. Drivers may only read their own."""
        booking = self.bookings.require(booking_id)
        self._require_access(booking, actor)
        return booking

    def list_for_driver(self, driver_id: int, actor: Identity) -> list[Booking]:
        """List a driver's bookings, newest first."""
        if actor.is_driver and actor.user_id != driver_id:
            raise AccessDeniedError(
                "Drivers may only list their own bookings",
                details={"driver_id": driver_id, "user_id": actor.user_id},
            )
        return self.bookings.list_for_driver(driver_id)

    def list_pending_for_station(self, station_id: int, actor: Identity) -> list[Booking]:
        """List bookings at a station waiting for confirmation, oldest first."""
        actor.require_staff()
        self.stations.require(station_id)
        return self.bookings.list_by_status(BookingStatus.PENDING, station_id=station_id)

    def _require_status(self, booking: Booking, expected: BookingStatus) -> None:
        if booking.status != expected:
            raise ConflictError(
                f"Booking is {booking.status.value}, expected {expected.value}",
                details={"booking_id": booking.id, "status": booking.status.value},
            )

    def _require_access(self, booking: Booking, actor: Identity) -> None:
        if actor.is_staff:
            return
        if booking.driver_id != actor.user_id:
            raise AccessDeniedError(
                "Booking belongs to another driver",
                details={"booking_id": booking.id, "user_id": actor.user_id},
            )

    def _notify_driver(self, booking: Booking, kind: str, **payload) -> None:
        driver = self.users.get_by_id(booking.driver_id)
        if driver is None:
            logger.warning("Driver not found for notification", booking_id=booking.id)
            return
        self.outbox.add(driver.email, kind, booking_id=booking.id, **payload)
