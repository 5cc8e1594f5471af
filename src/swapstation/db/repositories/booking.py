"""Booking repository."""

from sqlalchemy import exists, select

from swapstation.db.models.booking import Booking
from swapstation.db.models.enums import BookingStatus
from swapstation.db.repositories.base import BaseRepository

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class BookingRepository(BaseRepository[Booking]):
    """Repository for Booking operations."""

    model = Booking
    resource_name = "Booking"

    def get_by_code(self, code: str) -> Booking | None:
        """Get the booking currently holding a confirmation code.

        Args:
            code: Six character confirmation code.

        Returns:
            Booking or None.
        """
        stmt = select(Booking).where(Booking.confirmation_code == code)
        return self.session.scalar(stmt)

    def get_latest_by_issued_code(self, code: str) -> Booking | None:
        """Get the most recent booking a code was ever issued to.

        Codes are cleared once a booking completes or is cancelled; this
        lookup lets callers tell a spent code from an unknown one.
        """
        stmt = (
            select(Booking)
            .where(Booking.issued_code == code)
            .order_by(Booking.confirmed_at.desc(), Booking.id.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def code_in_use(self, code: str) -> bool:
        """Check whether an active booking holds a code."""
        stmt = select(
            exists().where(
                Booking.confirmation_code == code,
                Booking.status.in_(ACTIVE_STATUSES),
            )
        )
        return bool(self.session.scalar(stmt))

    def list_for_driver(self, driver_id: int) -> list[Booking]:
        """Get a driver's bookings, newest first."""
        stmt = (
            select(Booking)
            .where(Booking.driver_id == driver_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def list_by_status(self, status: BookingStatus, station_id: int | None = None) -> list[Booking]:
        """Get bookings in a given status, oldest first."""
        stmt = select(Booking).where(Booking.status == status)
        if station_id is not None:
            stmt = stmt.where(Booking.station_id == station_id)
        return list(self.session.scalars(stmt.order_by(Booking.id)).all())

    def transition(self, booking_id: int, expected: BookingStatus, new: BookingStatus, **values) -> bool:
        """Move a booking to a new status only if it is still in ``expected``.

        Args:
            booking_id: Booking to update.
            expected: Status the caller observed.
            new: Status to set.
            **values: Additional columns to set.

        Returns:
            True if the row matched and was updated.
        """
        return self.conditional_update(booking_id, Booking.status == expected, status=new, **values)
