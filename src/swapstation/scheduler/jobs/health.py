"""Daily health sweep."""

from datetime import datetime

import structlog
from sqlalchemy.orm import Session

from swapstation.db.models.battery import BatteryUnit
from swapstation.db.models.enums import BatteryEventType, BatteryStatus, BookingStatus
from swapstation.db.repositories.battery import BatteryRepository
from swapstation.db.repositories.booking import BookingRepository
from swapstation.scheduler.jobs.base import BaseSweepJob
from swapstation.services.battery_store import BatteryStore, HealthBand, classify_health
from swapstation.services.notifications import ADMIN_RECIPIENT, BATTERY_HEALTH_ALERT, Outbox
from swapstation.utils.exceptions import ConflictError

logger = structlog.get_logger(__name__)

# Units in these states sit at a station and can be pulled from service
PULLABLE = (BatteryStatus.AVAILABLE, BatteryStatus.CHARGING)


class HealthCheckSweep(BaseSweepJob):
    """Band every unit's state of health and act on the bad ones.

    Units below the hard floor that are at a station are moved to
    MAINTENANCE. A reserved unit below the floor is released first and its
    booking is moved onto the best remaining unit at the station. Mounted
    units are only reported; they are routed to MAINTENANCE when they next
    come off a vehicle. Every unit below the critical threshold is reported
    to the administrators.
    """

    name = "health-check"
    interval_setting = "health_check_interval"
    paged = True

    def find_items(self, session: Session, now: datetime, after_id: int = 0) -> list[int]:
        page = BatteryRepository(session).list_page(after_id=after_id, limit=self.settings.sweep_batch_size)
        return [unit.id for unit in page]

    def process_item(self, session: Session, item_id: int, now: datetime, outbox: Outbox) -> bool:
        store = BatteryStore(session, self.settings, lambda: now)
        unit = store.batteries.get_by_id(item_id)
        if unit is None:
            return False

        band = classify_health(unit.state_of_health, self.settings)
        if band == HealthBand.HEALTHY:
            return False

        store.events.record(unit, BatteryEventType.HEALTH_CHECK, now, note=band.value)
        logger.debug("Battery health banded", battery_id=unit.id, band=band.value)

        changed = False
        if band == HealthBand.MAINTENANCE_REQUIRED:
            if unit.status == BatteryStatus.PENDING:
                changed = self.pull_reserved(session, store, unit)
            elif unit.status in PULLABLE:
                changed = store.force_maintenance(unit, "state of health below maintenance threshold")
            elif unit.status != BatteryStatus.MAINTENANCE:
                logger.warning(
                    "Battery below maintenance threshold is not at a station",
                    battery_id=unit.id,
                    status=unit.status.value,
                    state_of_health=unit.state_of_health,
                )

        if band in (HealthBand.CRITICAL, HealthBand.MAINTENANCE_REQUIRED):
            outbox.add(
                ADMIN_RECIPIENT,
                BATTERY_HEALTH_ALERT,
                battery_id=unit.id,
                serial_number=unit.serial_number,
                state_of_health=unit.state_of_health,
                band=band.value,
                status=unit.status.value,
                station_id=unit.current_station_id,
            )
        return changed

    def pull_reserved(self, session: Session, store: BatteryStore, unit: BatteryUnit) -> bool:
        """Release a worn reserved unit into MAINTENANCE and re-reserve for its booking.

        The booking keeps its code and expiry. If the station has no other
        eligible unit the booking stays CONFIRMED without a battery and
        redemption reports the conflict.

        Returns:
            False if the unit was no longer PENDING.
        """
        booking_id = unit.reserved_for_booking_id
        expiry = unit.reservation_expiry
        if not store.release(unit, "state of health below maintenance threshold"):
            return False
        store.force_maintenance(unit, "state of health below maintenance threshold")

        bookings = BookingRepository(session)
        booking = bookings.get_by_id(booking_id) if booking_id is not None else None
        if booking is None or booking.status != BookingStatus.CONFIRMED:
            return True

        try:
            replacement = store.reserve_for_booking(
                booking.id, booking.station_id, unit.battery_type, expiry
            )
        except ConflictError:
            logger.warning(
                "No replacement battery for confirmed booking",
                booking_id=booking.id,
                battery_id=unit.id,
                station_id=booking.station_id,
            )
            bookings.transition(
                booking.id, BookingStatus.CONFIRMED, BookingStatus.CONFIRMED, reserved_battery_id=None
            )
            return True

        bookings.transition(
            booking.id, BookingStatus.CONFIRMED, BookingStatus.CONFIRMED, reserved_battery_id=replacement.id
        )
        logger.info(
            "Booking moved to replacement battery",
            booking_id=booking.id,
            worn_battery_id=unit.id,
            battery_id=replacement.id,
        )
        return True
