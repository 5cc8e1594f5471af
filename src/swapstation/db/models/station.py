"""Station, vehicle and user ORM models.

These records are managed elsewhere; the engine only reads them and, for
vehicles, moves pending registrations to REJECTED on timeout.
"""

from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from swapstation.db.base import Base, TimestampMixin
from swapstation.db.models.enums import UserRole, VehicleStatus


class User(Base, TimestampMixin):
    """Driver, staff member or administrator."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, length=20), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role})>"


class Station(Base, TimestampMixin):
    """Swap station stocking one battery type."""

    __tablename__ = "stations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    battery_type: Mapped[str] = mapped_column(String(50), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Station(id={self.id}, name='{self.name}')>"


class Vehicle(Base, TimestampMixin):
    """Driver-owned electric vehicle."""

    __tablename__ = "vehicles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    driver_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    plate_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    battery_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[VehicleStatus] = mapped_column(
        Enum(VehicleStatus, native_enum=False, length=20),
        nullable=False,
        default=VehicleStatus.PENDING,
        index=True,
    )
    registered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id}, plate='{self.plate_number}', status={self.status})>"
