"""Station, vehicle and user repositories."""

from datetime import datetime

from sqlalchemy import select

from swapstation.db.models.enums import VehicleStatus
from swapstation.db.models.station import Station, User, Vehicle
from swapstation.db.repositories.base import BaseRepository


class StationRepository(BaseRepository[Station]):
    """Repository for Station lookups."""

    model = Station
    resource_name = "Station"


class UserRepository(BaseRepository[User]):
    """Repository for User lookups."""

    model = User
    resource_name = "User"


class VehicleRepository(BaseRepository[Vehicle]):
    """Repository for Vehicle operations."""

    model = Vehicle
    resource_name = "Vehicle"

    def list_pending_registered_before(self, cutoff: datetime, limit: int) -> list[Vehicle]:
        """Get registrations still awaiting approval that were filed before ``cutoff``.

        Args:
            cutoff: Registration time threshold.
            limit: Maximum number of rows.

        Returns:
            Vehicles ordered by registration time.
        """
        stmt = (
            select(Vehicle)
            .where(
                Vehicle.status == VehicleStatus.PENDING,
                Vehicle.registered_at < cutoff,
            )
            .order_by(Vehicle.registered_at, Vehicle.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def reject_pending(self, vehicle_id: int, rejected_at: datetime) -> bool:
        """Move a registration from PENDING to REJECTED if nobody decided it meanwhile."""
        return self.conditional_update(
            vehicle_id,
            Vehicle.status == VehicleStatus.PENDING,
            status=VehicleStatus.REJECTED,
            rejected_at=rejected_at,
        )
