"""Subscription credit ORM model."""

from datetime import date

from sqlalchemy import CheckConstraint, Date, Enum, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from swapstation.db.base import Base, TimestampMixin
from swapstation.db.models.enums import CreditStatus


class SubscriptionCredit(Base, TimestampMixin):
    """Swap entitlement bought by a driver through a service package."""

    __tablename__ = "subscription_credits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    driver_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    package_id: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[CreditStatus] = mapped_column(
        Enum(CreditStatus, native_enum=False, length=20),
        nullable=False,
        default=CreditStatus.ACTIVE,
        index=True,
    )
    remaining_swaps: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("remaining_swaps >= 0", name="ck_credit_remaining_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<SubscriptionCredit(driver={self.driver_id}, status={self.status}, "
            f"remaining={self.remaining_swaps})>"
        )
