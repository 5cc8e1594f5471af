"""Shared test fixtures."""

import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from swapstation.config.settings import Settings
from swapstation.db.engine import create_engine, create_tables, drop_tables, get_session
from swapstation.db.models import (
    BatteryStatus,
    BatteryUnit,
    Booking,
    BookingStatus,
    CreditStatus,
    Station,
    SubscriptionCredit,
    User,
    UserRole,
    Vehicle,
    VehicleStatus,
)
from swapstation.services.identity import Identity
from swapstation.services.notifications import NotificationRequest, Notifier
from swapstation.utils.exceptions import NotificationError

T0 = datetime(2024, 6, 1, 9, 0, 0)
BATTERY_TYPE = "LFP-72V"


class FrozenClock:
    """Clock returning a fixed time that tests move forward explicitly."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier(Notifier):
    """Notifier keeping every request in memory."""

    channel = "recording"

    def __init__(self) -> None:
        self.sent: list[NotificationRequest] = []

    async def send(self, request: NotificationRequest) -> None:
        self.sent.append(request)

    def kinds(self) -> list[str]:
        return [r.kind for r in self.sent]


class FailingNotifier(Notifier):
    """Notifier whose delivery always fails."""

    channel = "failing"

    async def send(self, request: NotificationRequest) -> None:
        raise NotificationError("channel down")


@dataclass
class World:
    """Ids of the records seeded for a test."""

    driver_id: int
    other_driver_id: int
    staff_id: int
    admin_id: int
    station_id: int
    other_station_id: int
    vehicle_id: int
    pending_vehicle_id: int
    credit_id: int

    @property
    def driver(self) -> Identity:
        return Identity(self.driver_id, UserRole.DRIVER)

    @property
    def other_driver(self) -> Identity:
        return Identity(self.other_driver_id, UserRole.DRIVER)

    @property
    def staff(self) -> Identity:
        return Identity(self.staff_id, UserRole.STAFF)

    @property
    def admin(self) -> Identity:
        return Identity(self.admin_id, UserRole.ADMIN)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings with a file-backed SQLite database."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'swapstation.db'}",
        log_level="INFO",
        notifier="log",
    )


@pytest.fixture
def test_engine(test_settings):
    """Create test database engine with tables."""
    engine = create_engine(test_settings)
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def test_session(test_engine) -> Session:
    """Create test database session."""
    with get_session(test_engine) as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def world(test_engine) -> World:
    """Seed drivers, staff, two stations, vehicles and an active credit."""
    with get_session(test_engine) as session:
        driver = User(full_name="Dana Driver", email="dana@example.com", role=UserRole.DRIVER)
        other = User(full_name="Omar Other", email="omar@example.com", role=UserRole.DRIVER)
        staff = User(full_name="Sam Staff", email="sam@example.com", role=UserRole.STAFF)
        admin = User(full_name="Alex Admin", email="alex@example.com", role=UserRole.ADMIN)
        session.add_all([driver, other, staff, admin])
        session.flush()

        station = Station(name="Central", battery_type=BATTERY_TYPE, location="Main St 1")
        other_station = Station(name="Harbor", battery_type="NMC-48V", location="Pier 4")
        session.add_all([station, other_station])
        session.flush()

        vehicle = Vehicle(
            driver_id=driver.id,
            plate_number="V3-0001",
            model="Scooter X",
            battery_type=BATTERY_TYPE,
            status=VehicleStatus.ACTIVE,
            registered_at=T0 - timedelta(days=30),
        )
        pending_vehicle = Vehicle(
            driver_id=driver.id,
            plate_number="V4-0002",
            model="Scooter Y",
            battery_type=BATTERY_TYPE,
            status=VehicleStatus.PENDING,
            registered_at=T0 - timedelta(hours=1),
        )
        session.add_all([vehicle, pending_vehicle])
        session.flush()

        credit = SubscriptionCredit(
            driver_id=driver.id,
            package_id=1,
            start_date=date(2024, 5, 1),
            end_date=date(2024, 7, 1),
            status=CreditStatus.ACTIVE,
            remaining_swaps=5,
        )
        session.add(credit)
        session.flush()

        return World(
            driver_id=driver.id,
            other_driver_id=other.id,
            staff_id=staff.id,
            admin_id=admin.id,
            station_id=station.id,
            other_station_id=other_station.id,
            vehicle_id=vehicle.id,
            pending_vehicle_id=pending_vehicle.id,
            credit_id=credit.id,
        )


@pytest.fixture
def add_battery(test_engine, world):
    """Factory inserting a battery unit; stocked at the world's station by default."""
    counter = iter(range(1, 1000))

    def _add(**fields) -> int:
        values = {
            "serial_number": f"BAT-{next(counter):04d}",
            "model": "PowerPack 2",
            "battery_type": BATTERY_TYPE,
            "capacity": 3.5,
            "charge_level": 100.0,
            "state_of_health": 100.0,
            "status": BatteryStatus.AVAILABLE,
        }
        values.update(fields)
        if "current_station_id" not in fields and "mounted_vehicle_id" not in fields:
            values["current_station_id"] = world.station_id
        with get_session(test_engine) as session:
            unit = BatteryUnit(**values)
            session.add(unit)
            session.flush()
            return unit.id

    return _add


@pytest.fixture
def add_booking(test_engine, world):
    """Factory inserting a booking for the world's driver and vehicle."""

    def _add(**fields) -> int:
        values = {
            "driver_id": world.driver_id,
            "vehicle_id": world.vehicle_id,
            "station_id": world.station_id,
            "status": BookingStatus.PENDING,
        }
        values.update(fields)
        with get_session(test_engine) as session:
            booking = Booking(**values)
            session.add(booking)
            session.flush()
            return booking.id

    return _add


def load(engine, model, id):
    """Read a fresh copy of a record in its own session."""
    with get_session(engine) as session:
        return session.get(model, id)
