"""Battery unit state machine.

Every status change goes through a conditional UPDATE keyed on the status the
caller observed, so a unit is never moved out of a state it already left.
"""

import enum
import random
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.orm import Session

from swapstation.config.settings import Settings
from swapstation.db.models.battery import BatteryUnit
from swapstation.db.models.enums import BatteryEventType, BatteryStatus
from swapstation.db.repositories.battery import BatteryRepository
from swapstation.db.repositories.battery_event import BatteryEventRepository
from swapstation.services.identity import Identity
from swapstation.utils.exceptions import ConflictError, ValidationError

logger = structlog.get_logger(__name__)


class HealthBand(str, enum.Enum):
    """Classification of a unit's state of health."""

    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    MAINTENANCE_REQUIRED = "MAINTENANCE_REQUIRED"


@dataclass(frozen=True)
class ChargeOutcome:
    """Result of advancing a unit's charge to a point in time."""

    charge_level: float
    status: BatteryStatus
    last_charged_time: datetime | None

    def changed_status(self, previous: BatteryStatus) -> bool:
        return self.status != previous


def select_battery(
    candidates: Iterable[BatteryUnit],
    battery_type: str,
    min_charge: float = 95.0,
    min_health: float = 70.0,
) -> list[BatteryUnit]:
    """Rank units eligible for a reservation.

    Only AVAILABLE units of the requested type with enough charge and health
    qualify. Ties are broken by health, then charge, then id so the result is
    the same for the same snapshot.

    Args:
        candidates: Units stocked at the station.
        battery_type: Type the vehicle needs.
        min_charge: Minimum charge level.
        min_health: Minimum state of health.

    Returns:
        Eligible units, best first.
    """
    eligible = [
        unit
        for unit in candidates
        if unit.status == BatteryStatus.AVAILABLE
        and unit.battery_type == battery_type
        and unit.charge_level >= min_charge
        and unit.state_of_health >= min_health
    ]
    return sorted(eligible, key=lambda u: (-u.state_of_health, -u.charge_level, u.id))


def classify_health(state_of_health: float, settings: Settings) -> HealthBand:
    """Place a state of health value in its band."""
    if state_of_health < settings.health_maintenance_threshold:
        return HealthBand.MAINTENANCE_REQUIRED
    if state_of_health < settings.health_critical_threshold:
        return HealthBand.CRITICAL
    if state_of_health < settings.health_warning_threshold:
        return HealthBand.WARNING
    return HealthBand.HEALTHY


def advance_charge(
    status: BatteryStatus,
    charge_level: float,
    state_of_health: float,
    last_charged_time: datetime | None,
    now: datetime,
    settings: Settings,
) -> ChargeOutcome:
    """Compute a unit's charge and status at ``now``.

    Charge accrues linearly from ``last_charged_time``. A CHARGING unit in
    service health becomes AVAILABLE from the reserve threshold and keeps
    accruing until 100%. A CHARGING unit below service health only leaves
    the charger at 100%, and goes to MAINTENANCE.

    Args:
        status: Current status (CHARGING or AVAILABLE).
        charge_level: Current charge level.
        state_of_health: Current state of health.
        last_charged_time: Last time charge was accounted, or None.
        now: Reference time.
        settings: Thresholds and charge rate.

    Returns:
        The new charge, status and accounting time.
    """
    if last_charged_time is None:
        # Start accounting from now
        return ChargeOutcome(charge_level, status, now)

    elapsed_hours = max((now - last_charged_time).total_seconds(), 0.0) / 3600
    new_level = min(100.0, charge_level + elapsed_hours * settings.charge_rate_per_hour)
    new_level = round(new_level, 2)
    full = new_level >= 100.0
    next_accounting = None if full else now

    if status != BatteryStatus.CHARGING:
        return ChargeOutcome(new_level, status, next_accounting)

    if state_of_health >= settings.min_service_health:
        if new_level >= settings.min_reserve_charge:
            return ChargeOutcome(new_level, BatteryStatus.AVAILABLE, next_accounting)
        return ChargeOutcome(new_level, BatteryStatus.CHARGING, now)

    if full:
        return ChargeOutcome(new_level, BatteryStatus.MAINTENANCE, None)
    return ChargeOutcome(new_level, BatteryStatus.CHARGING, now)


def estimated_minutes_to_full(unit: BatteryUnit, settings: Settings) -> int:
    """Minutes a unit needs on the charger to reach 100%."""
    missing = max(100.0 - unit.charge_level, 0.0)
    return int(round(missing / settings.charge_rate_per_hour * 60))


class BatteryStore:
    """Owns battery unit transitions and their event log."""

    def __init__(
        self,
        session: Session,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            session: Database session of the current transaction.
            settings: Application settings.
            clock: Source of the current time.
            rng: Random source for simulated discharge.
        """
        self.session = session
        self.settings = settings
        self.clock = clock
        self.rng = rng or random.Random()
        self.batteries = BatteryRepository(session)
        self.events = BatteryEventRepository(session)

    def reserve_for_booking(
        self,
        booking_id: int,
        station_id: int,
        battery_type: str,
        expiry: datetime,
        actor_id: int | None = None,
    ) -> BatteryUnit:
        """Reserve the best eligible unit at a station.

        Candidates are tried in ranking order; a candidate taken by a
        concurrent confirmation is skipped.

        Raises:
            ConflictError: If no eligible unit could be reserved.
        """
        ranked = select_battery(
            self.batteries.list_available_at_station(station_id, battery_type),
            battery_type,
            min_charge=self.settings.min_reserve_charge,
            min_health=self.settings.min_service_health,
        )
        for unit in ranked:
            if self.batteries.try_reserve(unit.id, booking_id, expiry):
                self.events.record(
                    unit,
                    BatteryEventType.RESERVED,
                    self.clock(),
                    booking_id=booking_id,
                    actor_id=actor_id,
                )
                logger.info(
                    "Battery reserved",
                    battery_id=unit.id,
                    booking_id=booking_id,
                    charge_level=unit.charge_level,
                    state_of_health=unit.state_of_health,
                )
                return unit
            logger.debug("Battery taken concurrently", battery_id=unit.id, booking_id=booking_id)

        raise ConflictError(
            "No battery available for reservation",
            details={
                "station_id": station_id,
                "battery_type": battery_type,
                "candidates": len(ranked),
            },
        )

    def release(self, unit: BatteryUnit, reason: str, actor_id: int | None = None) -> bool:
        """Return a reserved unit to AVAILABLE.

        Returns:
            False if the unit was no longer PENDING.
        """
        booking_id = unit.reserved_for_booking_id
        if not self.batteries.release_reservation(unit.id):
            logger.warning("Battery not released, no longer pending", battery_id=unit.id)
            return False
        self.events.record(
            unit,
            BatteryEventType.RELEASED,
            self.clock(),
            booking_id=booking_id,
            actor_id=actor_id,
            note=reason,
        )
        logger.info("Battery released", battery_id=unit.id, booking_id=booking_id, reason=reason)
        return True

    def mount(self, unit: BatteryUnit, vehicle_id: int, booking_id: int) -> None:
        """Mount a reserved unit on a vehicle.

        Counts one use and applies usage degradation.

        Raises:
            ConflictError: If the unit is no longer PENDING.
        """
        usage_count = unit.usage_count + 1
        health = unit.state_of_health
        degraded = usage_count % self.settings.usage_per_health_drop == 0
        if degraded:
            health = max(0.0, health - self.settings.health_drop)

        moved = self.batteries.compare_and_set_status(
            unit.id,
            BatteryStatus.PENDING,
            BatteryStatus.IN_USE,
            current_station_id=None,
            mounted_vehicle_id=vehicle_id,
            reserved_for_booking_id=None,
            reservation_expiry=None,
            last_charged_time=None,
            usage_count=usage_count,
            state_of_health=health,
        )
        if not moved:
            raise ConflictError(
                "Battery is no longer reserved",
                details={"battery_id": unit.id, "booking_id": booking_id},
            )

        now = self.clock()
        self.events.record(
            unit, BatteryEventType.SWAP_OUT, now, booking_id=booking_id, vehicle_id=vehicle_id
        )
        if degraded:
            self.events.record(
                unit,
                BatteryEventType.SOH_UPDATE,
                now,
                note=f"usage degradation at {usage_count} uses",
            )
            logger.info(
                "Battery health degraded by usage",
                battery_id=unit.id,
                usage_count=usage_count,
                state_of_health=health,
            )

    def unmount_to_station(self, unit: BatteryUnit, station_id: int, booking_id: int) -> BatteryStatus:
        """Take a unit off its vehicle and leave it at a station.

        The unit arrives partly discharged and goes to CHARGING when its
        health allows service, otherwise to MAINTENANCE.

        Returns:
            The status the unit was routed to.

        Raises:
            ConflictError: If the unit is not IN_USE.
        """
        vehicle_id = unit.mounted_vehicle_id
        charge_level = float(
            self.rng.randint(self.settings.discharge_min, self.settings.discharge_max)
        )
        now = self.clock()
        in_service = unit.state_of_health >= self.settings.min_service_health
        target = BatteryStatus.CHARGING if in_service else BatteryStatus.MAINTENANCE

        moved = self.batteries.compare_and_set_status(
            unit.id,
            BatteryStatus.IN_USE,
            target,
            mounted_vehicle_id=None,
            current_station_id=station_id,
            charge_level=charge_level,
            last_charged_time=now if in_service else None,
        )
        if not moved:
            raise ConflictError(
                "Mounted battery is not in use",
                details={"battery_id": unit.id, "status": unit.status.value},
            )

        self.events.record(
            unit, BatteryEventType.SWAP_IN, now, booking_id=booking_id, vehicle_id=vehicle_id
        )
        self.events.record(
            unit,
            BatteryEventType.CHARGING_START if in_service else BatteryEventType.MAINTENANCE_START,
            now,
        )
        logger.info(
            "Battery returned to station",
            battery_id=unit.id,
            station_id=station_id,
            status=target.value,
            charge_level=charge_level,
        )
        return target

    def apply_charge(self, unit: BatteryUnit) -> ChargeOutcome | None:
        """Advance a unit's charge to the current time and persist it.

        Returns:
            The outcome, or None if the unit changed status meanwhile.
        """
        previous = unit.status
        outcome = advance_charge(
            previous,
            unit.charge_level,
            unit.state_of_health,
            unit.last_charged_time,
            self.clock(),
            self.settings,
        )
        moved = self.batteries.compare_and_set_status(
            unit.id,
            previous,
            outcome.status,
            charge_level=outcome.charge_level,
            last_charged_time=outcome.last_charged_time,
        )
        if not moved:
            return None

        if outcome.changed_status(previous):
            event_type = (
                BatteryEventType.CHARGED
                if outcome.status == BatteryStatus.AVAILABLE
                else BatteryEventType.MAINTENANCE_START
            )
            self.events.record(unit, event_type, self.clock())
        return outcome

    def force_maintenance(self, unit: BatteryUnit, reason: str) -> bool:
        """Move a unit to MAINTENANCE from its observed status.

        Returns:
            False if the unit changed status meanwhile.
        """
        previous = unit.status
        if previous == BatteryStatus.MAINTENANCE:
            return False
        moved = self.batteries.compare_and_set_status(
            unit.id, previous, BatteryStatus.MAINTENANCE, last_charged_time=None
        )
        if moved:
            self.events.record(unit, BatteryEventType.MAINTENANCE_START, self.clock(), note=reason)
            logger.warning(
                "Battery forced into maintenance",
                battery_id=unit.id,
                previous_status=previous.value,
                state_of_health=unit.state_of_health,
                reason=reason,
            )
        return moved

    def complete_maintenance(
        self, battery_id: int, new_health: float, actor: Identity
    ) -> BatteryUnit:
        """Record an operator's maintenance result.

        The usage counter is reset. The unit goes back to AVAILABLE only if
        the new health allows service.

        Raises:
            AccessDeniedError: If the actor is not staff.
            ValidationError: If ``new_health`` is outside 0-100.
            NotFoundError: If the unit does not exist.
            ConflictError: If the unit is not in MAINTENANCE.
        """
        actor.require_staff()
        if not 0.0 <= new_health <= 100.0:
            raise ValidationError(
                "State of health must be between 0 and 100",
                details={"state_of_health": new_health},
            )

        unit = self.batteries.require(battery_id)
        if unit.status != BatteryStatus.MAINTENANCE:
            raise ConflictError(
                "Battery is not in maintenance",
                details={"battery_id": battery_id, "status": unit.status.value},
            )

        now = self.clock()
        target = (
            BatteryStatus.AVAILABLE
            if new_health >= self.settings.min_service_health
            else BatteryStatus.MAINTENANCE
        )
        moved = self.batteries.compare_and_set_status(
            unit.id,
            BatteryStatus.MAINTENANCE,
            target,
            state_of_health=new_health,
            usage_count=0,
            last_maintenance_at=now,
        )
        if not moved:
            raise ConflictError("Battery left maintenance concurrently", details={"battery_id": battery_id})

        self.events.record(
            unit,
            BatteryEventType.MAINTENANCE_END
            if target == BatteryStatus.AVAILABLE
            else BatteryEventType.SOH_UPDATE,
            now,
            actor_id=actor.user_id,
        )
        logger.info(
            "Maintenance completed",
            battery_id=unit.id,
            state_of_health=new_health,
            status=target.value,
            actor_id=actor.user_id,
        )
        return unit
