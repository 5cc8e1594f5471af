"""Battery unit ORM model."""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from swapstation.db.base import Base, TimestampMixin
from swapstation.db.models.enums import BatteryStatus


class BatteryUnit(Base, TimestampMixin):
    """Physical swappable battery.

    A unit is located at a station or mounted on a vehicle, never both.
    ``reserved_for_booking_id`` is set exactly while the unit is PENDING.
    """

    __tablename__ = "battery_units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    battery_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    capacity: Mapped[float | None] = mapped_column(Float, nullable=True)  # kWh

    charge_level: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    state_of_health: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    status: Mapped[BatteryStatus] = mapped_column(
        Enum(BatteryStatus, native_enum=False, length=20),
        nullable=False,
        default=BatteryStatus.AVAILABLE,
        index=True,
    )

    # Location
    current_station_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("stations.id"), nullable=True, index=True
    )
    mounted_vehicle_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("vehicles.id"), nullable=True, unique=True
    )

    # Reservation
    reserved_for_booking_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("bookings.id"), nullable=True, index=True
    )
    reservation_expiry: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    last_charged_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_maintenance_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "current_station_id IS NULL OR mounted_vehicle_id IS NULL",
            name="ck_battery_single_location",
        ),
        CheckConstraint(
            "charge_level >= 0 AND charge_level <= 100", name="ck_battery_charge_range"
        ),
        CheckConstraint(
            "state_of_health >= 0 AND state_of_health <= 100", name="ck_battery_health_range"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<BatteryUnit(id={self.id}, status={self.status}, "
            f"charge={self.charge_level}, soh={self.state_of_health})>"
        )
