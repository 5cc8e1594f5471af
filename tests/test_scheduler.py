"""Tests for the reconciliation sweeps and their scheduler."""

import asyncio
import threading
from datetime import timedelta

import pytest

from swapstation.config.logging import SweepStats
from swapstation.db.engine import get_session
from swapstation.db.models import (
    BatteryEventType,
    BatteryStatus,
    BatteryUnit,
    Booking,
    BookingStatus,
    SubscriptionCredit,
    Vehicle,
    VehicleStatus,
)
from swapstation.db.repositories import BatteryEventRepository
from swapstation.scheduler import ReconciliationScheduler
from swapstation.scheduler.jobs import (
    ApprovalTimeoutSweep,
    AutoChargeSweep,
    BaseSweepJob,
    BookingExpirySweep,
    HealthCheckSweep,
)
from swapstation.services.bookings import BookingManager
from swapstation.services.notifications import (
    ADMIN_RECIPIENT,
    BATTERY_HEALTH_ALERT,
    BOOKING_AUTO_CANCELLED,
    VEHICLE_REGISTRATION_REJECTED,
)
from swapstation.services.swaps import SwapEngine
from swapstation.utils.exceptions import ConflictError, NotFoundError

from conftest import T0, FailingNotifier, load


def confirm(engine, settings, clock, booking_id, staff):
    with get_session(engine) as session:
        return BookingManager(session, settings, clock).confirm(booking_id, staff)


class TestBookingExpirySweep:
    """Tests for releasing batteries held for no-shows."""

    @pytest.mark.asyncio
    async def test_expired_reservation(self, test_engine, test_settings, clock, notifier, add_battery, add_booking, world):
        """Test that an unredeemed booking is cancelled and its battery freed after the window."""
        u7 = add_battery(charge_level=98.0, state_of_health=92.0)
        b1 = add_booking()
        booking = confirm(test_engine, test_settings, clock, b1, world.staff)
        assert booking.reservation_expiry == T0 + timedelta(hours=3)
        assert booking.reserved_battery_id == u7

        clock.advance(hours=3, minutes=5)
        stats = await BookingExpirySweep(test_engine, test_settings, notifier, clock).run()

        assert stats.success
        assert stats.items_found == 1
        assert stats.items_changed == 1

        unit = load(test_engine, BatteryUnit, u7)
        assert unit.status == BatteryStatus.AVAILABLE
        assert unit.reserved_for_booking_id is None
        assert unit.reservation_expiry is None

        b1_row = load(test_engine, Booking, b1)
        assert b1_row.status == BookingStatus.CANCELLED
        assert b1_row.confirmation_code is None

        # one swap in total, taken at confirmation
        assert load(test_engine, SubscriptionCredit, world.credit_id).remaining_swaps == 4
        assert notifier.kinds() == [BOOKING_AUTO_CANCELLED]
        assert notifier.sent[0].recipient == "dana@example.com"

    @pytest.mark.asyncio
    async def test_reservation_still_valid(self, test_engine, test_settings, clock, notifier, add_battery, add_booking, world):
        """Test that a booking inside its window is left alone."""
        u7 = add_battery()
        b1 = add_booking()
        confirm(test_engine, test_settings, clock, b1, world.staff)

        clock.advance(hours=2, minutes=59)
        stats = await BookingExpirySweep(test_engine, test_settings, notifier, clock).run()

        assert stats.items_found == 0
        assert load(test_engine, BatteryUnit, u7).status == BatteryStatus.PENDING
        assert load(test_engine, Booking, b1).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_failed_notification_does_not_undo_expiry(
        self, test_engine, test_settings, clock, add_battery, add_booking, world
    ):
        """Test that a broken notification channel does not block the sweep."""
        u7 = add_battery()
        b1 = add_booking()
        confirm(test_engine, test_settings, clock, b1, world.staff)

        clock.advance(hours=4)
        stats = await BookingExpirySweep(test_engine, test_settings, FailingNotifier(), clock).run()

        assert stats.success
        assert stats.notifications_sent == 0
        assert load(test_engine, BatteryUnit, u7).status == BatteryStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_expired_then_redeem_rejected(self, test_engine, test_settings, clock, notifier, add_battery, add_booking, world):
        """Test that the code of an expired booking cannot be redeemed."""
        add_battery()
        b1 = add_booking()
        code = confirm(test_engine, test_settings, clock, b1, world.staff).confirmation_code

        clock.advance(hours=3, minutes=5)
        await BookingExpirySweep(test_engine, test_settings, notifier, clock).run()

        with get_session(test_engine) as session:
            with pytest.raises(ConflictError):
                SwapEngine(session, test_settings, clock).redeem(code)


class TestAutoChargeSweep:
    """Tests for charge accrual on chargers."""

    @pytest.mark.asyncio
    async def test_charges_and_releases(self, test_engine, test_settings, clock, notifier, add_battery):
        """Test that healthy units accrue and leave the charger at the reserve threshold."""
        slow = add_battery(status=BatteryStatus.CHARGING, charge_level=30.0, last_charged_time=T0 - timedelta(hours=1))
        ready = add_battery(status=BatteryStatus.CHARGING, charge_level=80.0, last_charged_time=T0 - timedelta(hours=1))
        fresh = add_battery(status=BatteryStatus.CHARGING, charge_level=20.0)
        add_battery()

        stats = await AutoChargeSweep(test_engine, test_settings, notifier, clock).run()

        assert stats.success
        assert stats.items_found == 3
        slow_unit = load(test_engine, BatteryUnit, slow)
        assert slow_unit.status == BatteryStatus.CHARGING
        assert slow_unit.charge_level == 55.0
        assert slow_unit.last_charged_time == T0

        ready_unit = load(test_engine, BatteryUnit, ready)
        assert ready_unit.status == BatteryStatus.AVAILABLE
        assert ready_unit.charge_level == 100.0

        fresh_unit = load(test_engine, BatteryUnit, fresh)
        assert fresh_unit.charge_level == 20.0
        assert fresh_unit.last_charged_time == T0

    @pytest.mark.asyncio
    async def test_unhealthy_unit_goes_to_maintenance(self, test_engine, test_settings, clock, notifier, add_battery):
        """Test that a unit below service health leaves the charger for MAINTENANCE at 100%."""
        worn = add_battery(
            status=BatteryStatus.CHARGING,
            charge_level=50.0,
            state_of_health=65.0,
            last_charged_time=T0 - timedelta(hours=2),
        )

        await AutoChargeSweep(test_engine, test_settings, notifier, clock).run()

        unit = load(test_engine, BatteryUnit, worn)
        assert unit.status == BatteryStatus.MAINTENANCE
        assert unit.charge_level == 100.0
        with get_session(test_engine) as session:
            kinds = [e.event_type for e in BatteryEventRepository(session).list_for_battery(worn)]
        assert kinds == [BatteryEventType.MAINTENANCE_START]

    @pytest.mark.asyncio
    async def test_available_unit_tops_up(self, test_engine, test_settings, clock, notifier, add_battery):
        """Test that an AVAILABLE unit released below 100% keeps charging."""
        topping = add_battery(charge_level=96.0, last_charged_time=T0 - timedelta(minutes=6))

        await AutoChargeSweep(test_engine, test_settings, notifier, clock).run()

        unit = load(test_engine, BatteryUnit, topping)
        assert unit.status == BatteryStatus.AVAILABLE
        assert unit.charge_level == 98.5

    @pytest.mark.asyncio
    async def test_item_failure_is_isolated(self, test_engine, test_settings, clock, notifier, add_battery):
        """Test that one failing unit does not stop the others."""
        broken = add_battery(status=BatteryStatus.CHARGING, charge_level=30.0, last_charged_time=T0 - timedelta(hours=1))
        healthy = add_battery(status=BatteryStatus.CHARGING, charge_level=30.0, last_charged_time=T0 - timedelta(hours=1))

        class FlakyChargeSweep(AutoChargeSweep):
            def process_item(self, session, item_id, now, outbox):
                if item_id == broken:
                    raise RuntimeError("charger offline")
                return super().process_item(session, item_id, now, outbox)

        stats = await FlakyChargeSweep(test_engine, test_settings, notifier, clock).run()

        assert not stats.success
        assert len(stats.errors) == 1
        assert stats.errors[0].startswith(f"{broken}:")
        assert stats.items_changed == 1
        assert load(test_engine, BatteryUnit, broken).charge_level == 30.0
        assert load(test_engine, BatteryUnit, healthy).charge_level == 55.0

    @pytest.mark.asyncio
    async def test_rotates_through_more_units_than_one_batch(
        self, test_engine, test_settings, clock, notifier, add_battery
    ):
        """Test that a batch smaller than the charger population reaches every unit in turn."""
        test_settings.sweep_batch_size = 2
        first, second, third = (
            add_battery(status=BatteryStatus.CHARGING, charge_level=10.0, last_charged_time=T0) for _ in range(3)
        )
        sweep = AutoChargeSweep(test_engine, test_settings, notifier, clock)

        clock.advance(minutes=15)
        stats = await sweep.run()
        assert stats.items_found == 2
        assert load(test_engine, BatteryUnit, third).charge_level == 10.0

        clock.advance(minutes=15)
        await sweep.run()
        assert load(test_engine, BatteryUnit, third).charge_level == 22.5

        clock.advance(minutes=15)
        await sweep.run()
        levels = [load(test_engine, BatteryUnit, unit_id).charge_level for unit_id in (first, second, third)]
        assert levels == [28.75, 28.75, 22.5]

    @pytest.mark.asyncio
    async def test_database_work_runs_off_the_event_loop(
        self, test_engine, test_settings, clock, notifier, add_battery
    ):
        """Test that selection and item transactions run in worker threads."""
        add_battery(status=BatteryStatus.CHARGING, charge_level=30.0, last_charged_time=T0 - timedelta(hours=1))
        loop_thread = threading.get_ident()
        threads: list[int] = []

        class ThreadRecordingSweep(AutoChargeSweep):
            def find_items(self, session, now):
                threads.append(threading.get_ident())
                return super().find_items(session, now)

            def process_item(self, session, item_id, now, outbox):
                threads.append(threading.get_ident())
                return super().process_item(session, item_id, now, outbox)

        stats = await ThreadRecordingSweep(test_engine, test_settings, notifier, clock).run()

        assert stats.items_changed == 1
        assert len(threads) == 2
        assert loop_thread not in threads


class TestHealthCheckSweep:
    """Tests for the daily health sweep."""

    @pytest.mark.asyncio
    async def test_bands_and_actions(self, test_engine, test_settings, clock, notifier, add_battery, world):
        """Test banding, forced maintenance and administrator alerts."""
        healthy = add_battery(state_of_health=95.0)
        warning = add_battery(state_of_health=75.0)
        critical = add_battery(state_of_health=65.0)
        worn_at_station = add_battery(status=BatteryStatus.CHARGING, state_of_health=55.0, charge_level=40.0)
        worn_on_vehicle = add_battery(
            status=BatteryStatus.IN_USE,
            current_station_id=None,
            mounted_vehicle_id=world.vehicle_id,
            state_of_health=50.0,
        )

        stats = await HealthCheckSweep(test_engine, test_settings, notifier, clock).run()

        assert stats.success
        assert stats.items_found == 5
        assert stats.items_changed == 1

        assert load(test_engine, BatteryUnit, healthy).status == BatteryStatus.AVAILABLE
        assert load(test_engine, BatteryUnit, warning).status == BatteryStatus.AVAILABLE
        assert load(test_engine, BatteryUnit, critical).status == BatteryStatus.AVAILABLE
        assert load(test_engine, BatteryUnit, worn_at_station).status == BatteryStatus.MAINTENANCE
        assert load(test_engine, BatteryUnit, worn_on_vehicle).status == BatteryStatus.IN_USE

        alerted = sorted(r.payload["battery_id"] for r in notifier.sent)
        assert alerted == sorted([critical, worn_at_station, worn_on_vehicle])
        assert all(r.kind == BATTERY_HEALTH_ALERT for r in notifier.sent)
        assert all(r.recipient == ADMIN_RECIPIENT for r in notifier.sent)

        with get_session(test_engine) as session:
            events = BatteryEventRepository(session)
            assert events.list_for_battery(healthy) == []
            checks = events.list_for_battery(warning, BatteryEventType.HEALTH_CHECK)
            assert [e.note for e in checks] == ["WARNING"]

    @pytest.mark.asyncio
    async def test_pages_through_all_units(self, test_engine, test_settings, clock, notifier, add_battery):
        """Test that more units than one batch are all visited."""
        test_settings.sweep_batch_size = 2
        ids = [add_battery(state_of_health=75.0) for _ in range(5)]

        stats = await HealthCheckSweep(test_engine, test_settings, notifier, clock).run()

        assert stats.items_found == 5
        with get_session(test_engine) as session:
            events = BatteryEventRepository(session)
            assert all(events.list_for_battery(i) for i in ids)

    @pytest.mark.asyncio
    async def test_reserved_unit_below_floor_is_replaced(
        self, test_engine, test_settings, clock, notifier, add_battery, add_booking, world
    ):
        """Test that a worn reserved unit goes to MAINTENANCE and its booking moves to another unit."""
        worn = add_battery(charge_level=100.0, state_of_health=95.0)
        b1 = add_booking()
        booking = confirm(test_engine, test_settings, clock, b1, world.staff)
        spare = add_battery(charge_level=97.0, state_of_health=88.0)
        with get_session(test_engine) as session:
            session.get(BatteryUnit, worn).state_of_health = 55.0

        stats = await HealthCheckSweep(test_engine, test_settings, notifier, clock).run()

        assert stats.success
        assert stats.items_changed == 1
        worn_unit = load(test_engine, BatteryUnit, worn)
        assert worn_unit.status == BatteryStatus.MAINTENANCE
        assert worn_unit.reserved_for_booking_id is None

        spare_unit = load(test_engine, BatteryUnit, spare)
        assert spare_unit.status == BatteryStatus.PENDING
        assert spare_unit.reserved_for_booking_id == b1
        assert spare_unit.reservation_expiry == T0 + timedelta(hours=3)

        b1_row = load(test_engine, Booking, b1)
        assert b1_row.status == BookingStatus.CONFIRMED
        assert b1_row.reserved_battery_id == spare
        assert b1_row.confirmation_code == booking.confirmation_code

        with get_session(test_engine) as session:
            kinds = [e.event_type for e in BatteryEventRepository(session).list_for_battery(worn)]
            assert BatteryEventType.RELEASED in kinds
            assert kinds[-1] == BatteryEventType.MAINTENANCE_START
            swap = SwapEngine(session, test_settings, clock).redeem(booking.confirmation_code)
            assert swap.swap_out_battery_id == spare

    @pytest.mark.asyncio
    async def test_reserved_unit_below_floor_without_replacement(
        self, test_engine, test_settings, clock, notifier, add_battery, add_booking, world
    ):
        """Test that a booking with no replacement unit keeps its code but holds no battery."""
        worn = add_battery(charge_level=100.0, state_of_health=95.0)
        b1 = add_booking()
        booking = confirm(test_engine, test_settings, clock, b1, world.staff)
        with get_session(test_engine) as session:
            session.get(BatteryUnit, worn).state_of_health = 55.0

        await HealthCheckSweep(test_engine, test_settings, notifier, clock).run()

        assert load(test_engine, BatteryUnit, worn).status == BatteryStatus.MAINTENANCE
        b1_row = load(test_engine, Booking, b1)
        assert b1_row.status == BookingStatus.CONFIRMED
        assert b1_row.reserved_battery_id is None
        assert notifier.kinds() == [BATTERY_HEALTH_ALERT]
        with get_session(test_engine) as session:
            with pytest.raises(ConflictError):
                SwapEngine(session, test_settings, clock).redeem(booking.confirmation_code)

    @pytest.mark.asyncio
    async def test_holds_one_batch_at_a_time(self, test_engine, test_settings, clock, notifier, add_battery):
        """Test that a run selects and processes one batch before reading the next."""
        test_settings.sweep_batch_size = 2
        ids = [add_battery(state_of_health=75.0) for _ in range(5)]
        selected: list[tuple[int, list[int]]] = []
        processed: list[int] = []

        class RecordingHealthSweep(HealthCheckSweep):
            def find_items(self, session, now, after_id=0):
                page = super().find_items(session, now, after_id)
                selected.append((len(processed), page))
                return page

            def process_item(self, session, item_id, now, outbox):
                processed.append(item_id)
                return super().process_item(session, item_id, now, outbox)

        stats = await RecordingHealthSweep(test_engine, test_settings, notifier, clock).run()

        assert stats.items_found == 5
        assert selected == [(0, ids[0:2]), (2, ids[2:4]), (4, ids[4:])]
        assert processed == ids


class TestApprovalTimeoutSweep:
    """Tests for rejecting stale vehicle registrations."""

    @pytest.mark.asyncio
    async def test_rejects_after_window(self, test_engine, test_settings, clock, notifier, world):
        """Test that a registration older than twelve hours is rejected."""
        with get_session(test_engine) as session:
            recent = Vehicle(
                driver_id=world.other_driver_id,
                plate_number="V5-0003",
                battery_type="LFP-72V",
                status=VehicleStatus.PENDING,
                registered_at=T0 + timedelta(hours=6),
            )
            session.add(recent)
            session.flush()
            recent_id = recent.id

        clock.advance(hours=12)
        stats = await ApprovalTimeoutSweep(test_engine, test_settings, notifier, clock).run()

        assert stats.items_changed == 1
        stale = load(test_engine, Vehicle, world.pending_vehicle_id)
        assert stale.status == VehicleStatus.REJECTED
        assert stale.rejected_at == clock.now
        assert load(test_engine, Vehicle, recent_id).status == VehicleStatus.PENDING
        assert load(test_engine, Vehicle, world.vehicle_id).status == VehicleStatus.ACTIVE

        assert notifier.kinds() == [VEHICLE_REGISTRATION_REJECTED]
        assert notifier.sent[0].payload["vehicle_id"] == world.pending_vehicle_id

    @pytest.mark.asyncio
    async def test_inside_window(self, test_engine, test_settings, clock, notifier, world):
        """Test that a young registration keeps waiting."""
        stats = await ApprovalTimeoutSweep(test_engine, test_settings, notifier, clock).run()

        assert stats.items_found == 0
        assert load(test_engine, Vehicle, world.pending_vehicle_id).status == VehicleStatus.PENDING


class BlockingJob(BaseSweepJob):
    """Job whose run waits until released."""

    name = "blocking"
    interval_setting = "booking_expiry_interval"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = asyncio.Event()
        self.runs = 0

    def find_items(self, session, now):
        return []

    def process_item(self, session, item_id, now, outbox):
        return False

    async def run(self):
        self.runs += 1
        await self.release.wait()
        stats = SweepStats(job_name=self.name)
        stats.finish()
        return stats


class BrokenJob(BlockingJob):
    name = "broken"

    async def run(self):
        raise RuntimeError("database unreachable")


class TestReconciliationScheduler:
    """Tests for running jobs."""

    def test_default_jobs(self, test_engine, test_settings, notifier):
        """Test that every sweep is registered."""
        scheduler = ReconciliationScheduler(test_engine, test_settings, notifier)
        assert sorted(scheduler.job_names) == [
            "approval-timeout",
            "auto-charge",
            "booking-expiry",
            "health-check",
        ]

    @pytest.mark.asyncio
    async def test_single_flight(self, test_engine, test_settings, notifier):
        """Test that a job is skipped while its previous run is in progress."""
        job = BlockingJob(test_engine, test_settings, notifier)
        scheduler = ReconciliationScheduler(test_engine, test_settings, notifier, jobs=[job])

        first = asyncio.create_task(scheduler.run_job("blocking"))
        await asyncio.sleep(0)
        assert scheduler.is_running("blocking")

        assert await scheduler.run_job("blocking") is None

        job.release.set()
        stats = await first
        assert stats.success
        assert job.runs == 1
        assert not scheduler.is_running("blocking")

    @pytest.mark.asyncio
    async def test_unknown_job(self, test_engine, test_settings, notifier):
        """Test that an unknown job name raises NotFoundError."""
        scheduler = ReconciliationScheduler(test_engine, test_settings, notifier)
        with pytest.raises(NotFoundError):
            await scheduler.run_job("nope")

    @pytest.mark.asyncio
    async def test_failed_run_reported(self, test_engine, test_settings, notifier):
        """Test that a run failing outright is reported, not raised."""
        scheduler = ReconciliationScheduler(
            test_engine, test_settings, notifier, jobs=[BrokenJob(test_engine, test_settings, notifier)]
        )
        stats = await scheduler.run_job("broken")

        assert not stats.success
        assert "database unreachable" in stats.errors[0]
        assert not scheduler.is_running("broken")

    @pytest.mark.asyncio
    async def test_run_all(self, test_engine, test_settings, clock, notifier, world):
        """Test that run_all runs each sweep once."""
        scheduler = ReconciliationScheduler(test_engine, test_settings, notifier, clock)
        results = await scheduler.run_all()

        assert [s.job_name for s in results] == scheduler.job_names
        assert all(s.success for s in results)

    @pytest.mark.asyncio
    async def test_run_forever_stops(self, test_engine, test_settings, notifier):
        """Test that stop ends the job loops."""
        job = BlockingJob(test_engine, test_settings, notifier)
        job.release.set()
        scheduler = ReconciliationScheduler(test_engine, test_settings, notifier, jobs=[job])

        task = asyncio.create_task(scheduler.run_forever())
        await asyncio.sleep(0.05)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=5)

        assert job.runs == 1
