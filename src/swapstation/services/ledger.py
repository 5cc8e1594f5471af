"""Subscription credit ledger."""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy.orm import Session

from swapstation.db.models.enums import CreditStatus
from swapstation.db.models.subscription import SubscriptionCredit
from swapstation.db.repositories.subscription import SubscriptionRepository
from swapstation.utils.exceptions import ConflictError, ValidationError

logger = structlog.get_logger(__name__)


class CreditLedger:
    """Tracks how many exchanges each driver may still perform.

    No refund operation exists: a swap consumed at booking confirmation
    stays consumed even if the driver never shows up.
    """

    def __init__(self, session: Session, clock: Callable[[], datetime] = datetime.now) -> None:
        self.session = session
        self.clock = clock
        self.credits = SubscriptionRepository(session)

    def get_active(self, driver_id: int) -> SubscriptionCredit | None:
        """Get the driver's ACTIVE credit valid today."""
        return self.credits.get_active(driver_id, self.clock().date())

    def remaining(self, driver_id: int) -> int:
        """Swaps the driver can still book today."""
        credit = self.get_active(driver_id)
        return credit.remaining_swaps if credit else 0

    def consume_one(self, driver_id: int) -> SubscriptionCredit:
        """Take one swap from the driver's active credit.

        A credit that reaches zero is moved to EXPIRED.

        Args:
            driver_id: Driver ID.

        Returns:
            The updated credit record.

        Raises:
            ConflictError: If the driver has no ACTIVE credit or no swaps left.
        """
        credit = self.get_active(driver_id)
        if credit is None:
            raise ConflictError(
                "Driver has no active subscription",
                details={"driver_id": driver_id},
            )
        if credit.remaining_swaps <= 0 or not self.credits.decrement(credit.id):
            raise ConflictError(
                "No swaps remaining on subscription",
                details={"driver_id": driver_id, "credit_id": credit.id},
            )

        if credit.remaining_swaps == 0:
            self.credits.set_status(credit.id, CreditStatus.ACTIVE, CreditStatus.EXPIRED)
            logger.info("Subscription credit used up", driver_id=driver_id, credit_id=credit.id)

        logger.info(
            "Swap credit consumed",
            driver_id=driver_id,
            credit_id=credit.id,
            remaining_swaps=credit.remaining_swaps,
        )
        return credit

    def grant(
        self, driver_id: int, package_id: int, swaps: int, duration_days: int
    ) -> SubscriptionCredit:
        """Open a new credit record after a successful package purchase.

        An ACTIVE record with no swaps left, or past its end date, is expired
        first.

        Raises:
            ValidationError: If ``swaps`` or ``duration_days`` is not positive.
            ConflictError: If the driver still holds swaps on an unexpired ACTIVE
                record.
        """
        if swaps <= 0 or duration_days <= 0:
            raise ValidationError(
                "Swaps and duration must be positive",
                details={"swaps": swaps, "duration_days": duration_days},
            )

        today = self.clock().date()
        current = self.credits.get_active(driver_id)
        if current is not None:
            if current.remaining_swaps > 0 and current.end_date >= today:
                raise ConflictError(
                    "Driver already holds an active subscription",
                    details={"driver_id": driver_id, "credit_id": current.id},
                )
            self.credits.set_status(current.id, CreditStatus.ACTIVE, CreditStatus.EXPIRED)

        credit = self.credits.add(
            SubscriptionCredit(
                driver_id=driver_id,
                package_id=package_id,
                start_date=today,
                end_date=today + timedelta(days=duration_days),
                status=CreditStatus.ACTIVE,
                remaining_swaps=swaps,
            )
        )
        logger.info(
            "Subscription credit granted",
            driver_id=driver_id,
            package_id=package_id,
            swaps=swaps,
            end_date=credit.end_date.isoformat(),
        )
        return credit
