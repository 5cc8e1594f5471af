"""Swap transaction ORM model."""

from datetime import datetime

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from swapstation.db.base import Base, TimestampMixin
from swapstation.db.models.enums import SwapStatus


class SwapTransaction(Base, TimestampMixin):
    """Append-only record of one physical battery exchange.

    The ``swap_out_*`` / ``swap_in_*`` snapshot columns hold the values read
    before the exchange mutated the batteries and are never recomputed.
    """

    __tablename__ = "swap_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    driver_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    vehicle_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vehicles.id"), nullable=False, index=True
    )
    station_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("stations.id"), nullable=False, index=True
    )
    staff_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    booking_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("bookings.id"), nullable=True, unique=True
    )

    # Battery handed to the driver (now mounted)
    swap_out_battery_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("battery_units.id"), nullable=False, index=True
    )
    swap_out_battery_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    swap_out_battery_charge_level: Mapped[float | None] = mapped_column(Float, nullable=True)
    swap_out_battery_health: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Battery taken off the vehicle (if one was mounted)
    swap_in_battery_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("battery_units.id"), nullable=True, index=True
    )
    swap_in_battery_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    swap_in_battery_charge_level: Mapped[float | None] = mapped_column(Float, nullable=True)
    swap_in_battery_health: Mapped[float | None] = mapped_column(Float, nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[SwapStatus] = mapped_column(
        Enum(SwapStatus, native_enum=False, length=20),
        nullable=False,
        default=SwapStatus.COMPLETED,
    )

    def __repr__(self) -> str:
        return (
            f"<SwapTransaction(id={self.id}, out={self.swap_out_battery_id}, "
            f"in={self.swap_in_battery_id})>"
        )
