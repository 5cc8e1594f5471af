"""Auto-charge sweep: accrue charge on batteries sitting in chargers."""

from datetime import datetime

import structlog
from sqlalchemy.orm import Session

from swapstation.db.models.enums import BatteryStatus
from swapstation.db.repositories.battery import BatteryRepository
from swapstation.scheduler.jobs.base import BaseSweepJob
from swapstation.services.battery_store import BatteryStore
from swapstation.services.notifications import Outbox

logger = structlog.get_logger(__name__)


class AutoChargeSweep(BaseSweepJob):
    """Advance the charge of CHARGING units and of AVAILABLE units still topping up."""

    name = "auto-charge"
    interval_setting = "auto_charge_interval"

    def find_items(self, session: Session, now: datetime) -> list[int]:
        units = BatteryRepository(session).list_accruing_charge(limit=self.settings.sweep_batch_size)
        return [unit.id for unit in units]

    def process_item(self, session: Session, item_id: int, now: datetime, outbox: Outbox) -> bool:
        store = BatteryStore(session, self.settings, lambda: now)
        unit = store.batteries.get_by_id(item_id)
        if unit is None or unit.status not in (BatteryStatus.CHARGING, BatteryStatus.AVAILABLE):
            return False
        if unit.status == BatteryStatus.AVAILABLE and unit.last_charged_time is None:
            return False

        previous_level = unit.charge_level
        previous_status = unit.status
        outcome = store.apply_charge(unit)
        if outcome is None:
            return False

        if outcome.status != previous_status:
            log = logger.warning if outcome.status == BatteryStatus.MAINTENANCE else logger.info
            log(
                "Battery left charger",
                battery_id=unit.id,
                status=outcome.status.value,
                charge_level=outcome.charge_level,
                state_of_health=unit.state_of_health,
            )
        return outcome.status != previous_status or outcome.charge_level != previous_level
