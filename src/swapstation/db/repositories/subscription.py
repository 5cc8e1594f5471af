"""Subscription credit repository."""

from datetime import date

from sqlalchemy import select

from swapstation.db.models.enums import CreditStatus
from swapstation.db.models.subscription import SubscriptionCredit
from swapstation.db.repositories.base import BaseRepository


class SubscriptionRepository(BaseRepository[SubscriptionCredit]):
    """Repository for SubscriptionCredit operations."""

    model = SubscriptionCredit
    resource_name = "Subscription credit"

    def get_active(self, driver_id: int, today: date | None = None) -> SubscriptionCredit | None:
        """Get a driver's ACTIVE credit record.

        Args:
            driver_id: Driver ID.
            today: If given, the record must also be valid on this date.

        Returns:
            SubscriptionCredit or None.
        """
        stmt = select(SubscriptionCredit).where(
            SubscriptionCredit.driver_id == driver_id,
            SubscriptionCredit.status == CreditStatus.ACTIVE,
        )
        if today is not None:
            stmt = stmt.where(
                SubscriptionCredit.start_date <= today,
                SubscriptionCredit.end_date >= today,
            )
        return self.session.scalar(stmt.order_by(SubscriptionCredit.id.desc()).limit(1))

    def list_for_driver(self, driver_id: int) -> list[SubscriptionCredit]:
        """Get all credit records of a driver, newest first."""
        stmt = (
            select(SubscriptionCredit)
            .where(SubscriptionCredit.driver_id == driver_id)
            .order_by(SubscriptionCredit.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def decrement(self, credit_id: int) -> bool:
        """Atomically take one swap off an ACTIVE record with swaps left.

        Returns:
            True if a swap was consumed.
        """
        return self.conditional_update(
            credit_id,
            SubscriptionCredit.status == CreditStatus.ACTIVE,
            SubscriptionCredit.remaining_swaps > 0,
            remaining_swaps=SubscriptionCredit.remaining_swaps - 1,
        )

    def set_status(self, credit_id: int, expected: CreditStatus, new: CreditStatus) -> bool:
        """Change a record's status only if it is still ``expected``."""
        return self.conditional_update(
            credit_id, SubscriptionCredit.status == expected, status=new
        )
