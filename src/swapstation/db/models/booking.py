"""Booking reservation ORM model."""

from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from swapstation.db.base import Base, TimestampMixin
from swapstation.db.models.enums import BookingStatus


class Booking(Base, TimestampMixin):
    """A driver's reservation of a battery exchange at a station."""

    __tablename__ = "bookings"

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
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, native_enum=False, length=20),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    # NULL outside CONFIRMED, so the unique index only covers active codes
    confirmation_code: Mapped[str | None] = mapped_column(
        String(6), nullable=True, unique=True
    )
    # Last code issued to this booking; kept after the live code is cleared
    issued_code: Mapped[str | None] = mapped_column(String(6), nullable=True, index=True)
    reserved_battery_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("battery_units.id", use_alter=True, name="fk_bookings_reserved_battery"),
        nullable=True,
    )
    reservation_expiry: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    confirmed_by_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, code={self.confirmation_code})>"
