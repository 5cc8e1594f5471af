"""Swap transaction repository."""

from sqlalchemy import or_, select

from swapstation.db.models.swap_transaction import SwapTransaction
from swapstation.db.repositories.base import BaseRepository


class SwapTransactionRepository(BaseRepository[SwapTransaction]):
    """Repository for SwapTransaction operations."""

    model = SwapTransaction
    resource_name = "Swap transaction"

    def get_by_booking(self, booking_id: int) -> SwapTransaction | None:
        """Get the exchange that fulfilled a booking."""
        stmt = select(SwapTransaction).where(SwapTransaction.booking_id == booking_id)
        return self.session.scalar(stmt)

    def list_for_vehicle(self, vehicle_id: int) -> list[SwapTransaction]:
        """Get a vehicle's exchanges, newest first."""
        stmt = (
            select(SwapTransaction)
            .where(SwapTransaction.vehicle_id == vehicle_id)
            .order_by(SwapTransaction.start_time.desc(), SwapTransaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def list_for_battery(self, battery_id: int) -> list[SwapTransaction]:
        """Get every exchange a battery took part in, newest first."""
        stmt = (
            select(SwapTransaction)
            .where(
                or_(
                    SwapTransaction.swap_out_battery_id == battery_id,
                    SwapTransaction.swap_in_battery_id == battery_id,
                )
            )
            .order_by(SwapTransaction.start_time.desc(), SwapTransaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())
