"""Base reconciliation job."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from swapstation.config.logging import OperationTimer, SweepStats
from swapstation.config.settings import Settings
from swapstation.db.engine import get_session
from swapstation.services.notifications import Notifier, Outbox

logger = structlog.get_logger(__name__)


class BaseSweepJob(ABC):
    """Base class for periodic sweeps.

    A run selects candidate ids in one short transaction, then processes each
    item in its own transaction. A failing item is logged with its id and the
    sweep moves on to the next one. Database work runs in a worker thread so
    the event loop keeps serving other jobs and HTTP requests meanwhile.

    Paged jobs select one batch of ascending ids at a time and process it
    before the next batch is read, so a run never holds more than
    ``sweep_batch_size`` ids.
    """

    name: str
    interval_setting: str
    paged: bool = False

    def __init__(
        self,
        engine: Engine,
        settings: Settings,
        notifier: Notifier,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the job.

        Args:
            engine: SQLAlchemy engine.
            settings: Application settings.
            notifier: Channel for notifications produced by the sweep.
            clock: Source of the current time.
        """
        self.engine = engine
        self.settings = settings
        self.notifier = notifier
        self.clock = clock

    @property
    def interval_seconds(self) -> int:
        return getattr(self.settings, self.interval_setting)

    @abstractmethod
    def find_items(self, session: Session, now: datetime) -> list[int]:
        """Select ids of the items this run should look at.

        Paged jobs take a third argument, ``after_id``, and return at most
        ``sweep_batch_size`` ids greater than it in ascending order.

        Args:
            session: Database session.
            now: Time the run started.

        Returns:
            Item ids.
        """
        pass

    @abstractmethod
    def process_item(self, session: Session, item_id: int, now: datetime, outbox: Outbox) -> bool:
        """Reconcile one item.

        Implementations reload the item and re-check its state, since it may
        have changed after it was selected.

        Args:
            session: Database session of this item's transaction.
            item_id: Item to process.
            now: Time the run started.
            outbox: Queue for notifications, flushed after commit.

        Returns:
            True if the item was changed.
        """
        pass

    def _select(self, now: datetime, after_id: int) -> list[int]:
        with get_session(self.engine) as session:
            if self.paged:
                return self.find_items(session, now, after_id)
            return self.find_items(session, now)

    def _process(self, item_id: int, now: datetime, outbox: Outbox) -> bool:
        with get_session(self.engine) as session:
            return self.process_item(session, item_id, now, outbox)

    async def run(self) -> SweepStats:
        """Run one sweep.

        Returns:
            Statistics for this run.
        """
        stats = SweepStats(job_name=self.name)
        now = self.clock()

        with OperationTimer(f"{self.name} sweep", logger, slow_after=self.interval_seconds, job=self.name):
            after_id = 0
            while True:
                item_ids = await asyncio.to_thread(self._select, now, after_id)
                stats.items_found += len(item_ids)
                await self._process_batch(item_ids, now, stats)

                if not self.paged or len(item_ids) < self.settings.sweep_batch_size:
                    break
                after_id = item_ids[-1]

        stats.finish()
        logger.info("Sweep finished", **stats.to_dict())
        return stats

    async def _process_batch(self, item_ids: list[int], now: datetime, stats: SweepStats) -> None:
        for item_id in item_ids:
            outbox = Outbox()
            try:
                changed = await asyncio.to_thread(self._process, item_id, now, outbox)
            except Exception as e:
                logger.error(
                    "Sweep item failed",
                    job=self.name,
                    item_id=item_id,
                    error=str(e),
                )
                stats.add_error(item_id, str(e))
                continue

            if changed:
                stats.items_changed += 1
            else:
                stats.items_skipped += 1
            stats.notifications_sent += await outbox.flush(self.notifier)
