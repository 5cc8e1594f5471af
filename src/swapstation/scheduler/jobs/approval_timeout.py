"""Approval timeout sweep: reject vehicle registrations nobody reviewed."""

from datetime import datetime, timedelta

import structlog
from sqlalchemy.orm import Session

from swapstation.db.repositories.station import UserRepository, VehicleRepository
from swapstation.scheduler.jobs.base import BaseSweepJob
from swapstation.services.notifications import VEHICLE_REGISTRATION_REJECTED, Outbox

logger = structlog.get_logger(__name__)


class ApprovalTimeoutSweep(BaseSweepJob):
    """Move PENDING vehicle registrations older than the approval window to REJECTED."""

    name = "approval-timeout"
    interval_setting = "approval_timeout_interval"

    def cutoff(self, now: datetime) -> datetime:
        return now - timedelta(hours=self.settings.approval_timeout_hours)

    def find_items(self, session: Session, now: datetime) -> list[int]:
        vehicles = VehicleRepository(session).list_pending_registered_before(
            self.cutoff(now), limit=self.settings.sweep_batch_size
        )
        return [vehicle.id for vehicle in vehicles]

    def process_item(self, session: Session, item_id: int, now: datetime, outbox: Outbox) -> bool:
        vehicles = VehicleRepository(session)
        vehicle = vehicles.get_by_id(item_id)
        if vehicle is None or vehicle.registered_at >= self.cutoff(now):
            return False
        if not vehicles.reject_pending(vehicle.id, now):
            return False

        logger.info(
            "Vehicle registration timed out",
            vehicle_id=vehicle.id,
            plate_number=vehicle.plate_number,
            registered_at=vehicle.registered_at.isoformat(),
        )
        driver = UserRepository(session).get_by_id(vehicle.driver_id)
        if driver is not None:
            outbox.add(
                driver.email,
                VEHICLE_REGISTRATION_REJECTED,
                vehicle_id=vehicle.id,
                plate_number=vehicle.plate_number,
                reason=f"not reviewed within {self.settings.approval_timeout_hours} hours",
            )
        return True
