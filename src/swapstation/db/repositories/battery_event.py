"""Battery event log repository."""

from datetime import datetime

from sqlalchemy import select

from swapstation.db.models.battery import BatteryUnit
from swapstation.db.models.battery_event import BatteryEvent
from swapstation.db.models.enums import BatteryEventType
from swapstation.db.repositories.base import BaseRepository


class BatteryEventRepository(BaseRepository[BatteryEvent]):
    """Repository for the append-only battery event log."""

    model = BatteryEvent
    resource_name = "Battery event"

    def record(
        self,
        battery: BatteryUnit,
        event_type: BatteryEventType,
        event_time: datetime,
        *,
        booking_id: int | None = None,
        vehicle_id: int | None = None,
        actor_id: int | None = None,
        note: str | None = None,
    ) -> BatteryEvent:
        """Append an event capturing the unit's current location, charge and health."""
        event = BatteryEvent(
            battery_id=battery.id,
            event_type=event_type,
            event_time=event_time,
            station_id=battery.current_station_id,
            vehicle_id=vehicle_id if vehicle_id is not None else battery.mounted_vehicle_id,
            booking_id=booking_id,
            actor_id=actor_id,
            charge_level=battery.charge_level,
            state_of_health=battery.state_of_health,
            note=note,
        )
        self.session.add(event)
        return event

    def list_for_battery(
        self, battery_id: int, event_type: BatteryEventType | None = None
    ) -> list[BatteryEvent]:
        """Get a unit's events in the order they happened."""
        stmt = select(BatteryEvent).where(BatteryEvent.battery_id == battery_id)
        if event_type is not None:
            stmt = stmt.where(BatteryEvent.event_type == event_type)
        return list(self.session.scalars(stmt.order_by(BatteryEvent.id)).all())
