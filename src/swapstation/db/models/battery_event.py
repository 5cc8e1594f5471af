"""Battery event log ORM model."""

from datetime import datetime

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from swapstation.db.base import Base
from swapstation.db.models.enums import BatteryEventType


class BatteryEvent(Base):
    """Append-only history entry for a battery unit."""

    __tablename__ = "battery_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    battery_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("battery_units.id"), nullable=False, index=True
    )
    event_type: Mapped[BatteryEventType] = mapped_column(
        Enum(BatteryEventType, native_enum=False, length=30), nullable=False, index=True
    )
    event_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    station_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vehicle_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    booking_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    charge_level: Mapped[float | None] = mapped_column(Float, nullable=True)
    state_of_health: Mapped[float | None] = mapped_column(Float, nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<BatteryEvent(battery={self.battery_id}, type={self.event_type})>"
