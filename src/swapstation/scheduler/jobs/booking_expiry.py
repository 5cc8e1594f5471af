"""Booking expiry sweep: release batteries held for no-shows."""

from datetime import datetime

import structlog
from sqlalchemy.orm import Session

from swapstation.db.models.enums import BatteryStatus
from swapstation.db.repositories.battery import BatteryRepository
from swapstation.db.repositories.booking import BookingRepository
from swapstation.scheduler.jobs.base import BaseSweepJob
from swapstation.services.bookings import BookingManager
from swapstation.services.notifications import Outbox

logger = structlog.get_logger(__name__)


class BookingExpirySweep(BaseSweepJob):
    """Cancel CONFIRMED bookings whose reservation ran out and free the battery.

    The credit consumed at confirmation is the no-show penalty; nothing else
    is charged here.
    """

    name = "booking-expiry"
    interval_setting = "booking_expiry_interval"

    def find_items(self, session: Session, now: datetime) -> list[int]:
        units = BatteryRepository(session).list_expired_reservations(
            now, limit=self.settings.sweep_batch_size
        )
        return [unit.id for unit in units]

    def process_item(self, session: Session, item_id: int, now: datetime, outbox: Outbox) -> bool:
        unit = BatteryRepository(session).get_by_id(item_id)
        if (
            unit is None
            or unit.status != BatteryStatus.PENDING
            or unit.reservation_expiry is None
            or unit.reservation_expiry >= now
        ):
            return False

        manager = BookingManager(session, self.settings, self.clock, outbox=outbox)
        booking_id = unit.reserved_for_booking_id
        booking = BookingRepository(session).get_by_id(booking_id) if booking_id else None
        if booking is not None:
            manager.expire(booking)
        else:
            logger.warning("Reserved battery without booking", battery_id=unit.id, booking_id=booking_id)

        return manager.store.release(unit, "reservation expired")
