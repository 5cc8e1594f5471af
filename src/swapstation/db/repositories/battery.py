"""Battery unit repository."""

from datetime import datetime

from sqlalchemy import or_, select

from swapstation.db.models.battery import BatteryUnit
from swapstation.db.models.enums import BatteryStatus
from swapstation.db.repositories.base import BaseRepository


class BatteryRepository(BaseRepository[BatteryUnit]):
    """Repository for BatteryUnit operations."""

    model = BatteryUnit
    resource_name = "Battery"

    def get_by_serial(self, serial_number: str) -> BatteryUnit | None:
        """Get battery by serial number.

        Args:
            serial_number: Battery serial number.

        Returns:
            BatteryUnit or None.
        """
        stmt = select(BatteryUnit).where(BatteryUnit.serial_number == serial_number)
        return self.session.scalar(stmt)

    def list_available_at_station(self, station_id: int, battery_type: str) -> list[BatteryUnit]:
        """Get AVAILABLE units of one battery type stocked at a station.

        Args:
            station_id: Station ID.
            battery_type: Required battery type.

        Returns:
            Units ordered by id.
        """
        stmt = (
            select(BatteryUnit)
            .where(
                BatteryUnit.current_station_id == station_id,
                BatteryUnit.battery_type == battery_type,
                BatteryUnit.status == BatteryStatus.AVAILABLE,
            )
            .order_by(BatteryUnit.id)
        )
        return list(self.session.scalars(stmt).all())

    def list_by_status(
        self, status: BatteryStatus, station_id: int | None = None, limit: int | None = None
    ) -> list[BatteryUnit]:
        """Get units in a given status.

        Args:
            status: Status to filter on.
            station_id: Optional station filter.
            limit: Optional maximum number of rows.

        Returns:
            Units ordered by id.
        """
        stmt = select(BatteryUnit).where(BatteryUnit.status == status)
        if station_id is not None:
            stmt = stmt.where(BatteryUnit.current_station_id == station_id)
        stmt = stmt.order_by(BatteryUnit.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def list_page(self, after_id: int = 0, limit: int = 500) -> list[BatteryUnit]:
        """Get a page of units ordered by id, starting after ``after_id``."""
        stmt = (
            select(BatteryUnit)
            .where(BatteryUnit.id > after_id)
            .order_by(BatteryUnit.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def list_expired_reservations(self, now: datetime, limit: int) -> list[BatteryUnit]:
        """Get PENDING units whose reservation expired before ``now``.

        Args:
            now: Reference time.
            limit: Maximum number of rows.

        Returns:
            Expired reserved units ordered by expiry.
        """
        stmt = (
            select(BatteryUnit)
            .where(
                BatteryUnit.status == BatteryStatus.PENDING,
                BatteryUnit.reservation_expiry.is_not(None),
                BatteryUnit.reservation_expiry < now,
            )
            .order_by(BatteryUnit.reservation_expiry, BatteryUnit.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def list_accruing_charge(self, limit: int) -> list[BatteryUnit]:
        """Get units that are gaining charge.

        That is every CHARGING unit plus AVAILABLE units released at or above
        the reserve threshold that have not reached 100% yet. Units that
        accrued least recently come first, so a batch smaller than the charger
        population rotates through all of it.
        """
        stmt = (
            select(BatteryUnit)
            .where(
                or_(
                    BatteryUnit.status == BatteryStatus.CHARGING,
                    (BatteryUnit.status == BatteryStatus.AVAILABLE)
                    & BatteryUnit.last_charged_time.is_not(None)
                    & (BatteryUnit.charge_level < 100.0),
                )
            )
            .order_by(BatteryUnit.last_charged_time.asc().nulls_first(), BatteryUnit.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def find_reserved_for(self, booking_id: int) -> BatteryUnit | None:
        """Get the PENDING unit reserved for a booking.

        Args:
            booking_id: Booking ID.

        Returns:
            BatteryUnit or None.
        """
        stmt = select(BatteryUnit).where(
            BatteryUnit.status == BatteryStatus.PENDING,
            BatteryUnit.reserved_for_booking_id == booking_id,
        )
        return self.session.scalar(stmt)

    def find_mounted_on(self, vehicle_id: int) -> BatteryUnit | None:
        """Get the unit currently mounted on a vehicle."""
        stmt = select(BatteryUnit).where(BatteryUnit.mounted_vehicle_id == vehicle_id)
        return self.session.scalar(stmt)

    def try_reserve(self, battery_id: int, booking_id: int, expiry: datetime) -> bool:
        """Atomically move a unit from AVAILABLE to PENDING.

        The UPDATE only matches while the row is still AVAILABLE and
        unreserved, so of two callers racing for the same unit exactly one
        sees a matched row.

        Args:
            battery_id: Unit to reserve.
            booking_id: Booking the unit is held for.
            expiry: Reservation expiry time.

        Returns:
            True if this call won the reservation.
        """
        return self.conditional_update(
            battery_id,
            BatteryUnit.status == BatteryStatus.AVAILABLE,
            BatteryUnit.reserved_for_booking_id.is_(None),
            status=BatteryStatus.PENDING,
            reserved_for_booking_id=booking_id,
            reservation_expiry=expiry,
        )

    def release_reservation(self, battery_id: int) -> bool:
        """Atomically move a PENDING unit back to AVAILABLE.

        Args:
            battery_id: Unit to release.

        Returns:
            True if the unit was PENDING and is now AVAILABLE.
        """
        return self.conditional_update(
            battery_id,
            BatteryUnit.status == BatteryStatus.PENDING,
            status=BatteryStatus.AVAILABLE,
            reserved_for_booking_id=None,
            reservation_expiry=None,
        )

    def compare_and_set_status(
        self, battery_id: int, expected: BatteryStatus, new: BatteryStatus, **values
    ) -> bool:
        """Update a unit only if it is still in the expected status.

        Args:
            battery_id: Unit to update.
            expected: Status the caller observed.
            new: Status to set.
            **values: Additional columns to set.

        Returns:
            True if the row matched and was updated.
        """
        return self.conditional_update(
            battery_id, BatteryUnit.status == expected, status=new, **values
        )
