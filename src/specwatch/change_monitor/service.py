"""
Change monitoring service.

Polls every active target on its own interval and runs one
fetch -> snapshot -> diff -> classify -> changelog -> dispatch cycle per poll.
Cycles of the same target are serialized by a per-target lock; cycles of
different targets run concurrently.
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from specwatch import __version__
from specwatch.change_monitor.analyzer import ChangeAnalyzer
from specwatch.change_monitor.changelog import ChangelogWriter
from specwatch.change_monitor.classifier import SeverityClassifier
from specwatch.change_monitor.health import HealthEvent, HealthStatus, HealthStore
from specwatch.core.canonical import CanonicalDocument
from specwatch.core.config import AppConfig, get_config
from specwatch.core.errors import FetchError, InvalidDocumentError
from specwatch.core.models import ChangelogEntry, MonitoredTarget
from specwatch.fetcher import Fetcher, HttpDocumentSource
from specwatch.notifications import (
    DeliveryWorker,
    NotificationDispatcher,
    TaskStore,
    build_providers,
)
from specwatch.registry import StaticTargetRegistry, TargetRegistry
from specwatch.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


class CycleStatus(str, Enum):
    """Outcome of one poll cycle."""

    BASELINE = "baseline"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CycleResult:
    """
    Result of one poll cycle of a target.

    Attributes:
        target_id: Target identifier
        status: Cycle outcome
        snapshot_id: Latest snapshot after the cycle, if a fetch succeeded
        entry: Changelog entry of the comparison, if one was written
        tasks: Number of notification tasks of the entry
        error: Error message of a failed cycle
        health_event: Failure or recovery event raised by the cycle, if any
    """
    target_id: str
    status: CycleStatus
    snapshot_id: Optional[str] = None
    entry: Optional[ChangelogEntry] = None
    tasks: int = 0
    error: Optional[str] = None
    health_event: Optional[HealthEvent] = None


class TargetLocks:
    """
    Per-target locks serializing the poll cycles of each target.

    Owned by the service and passed into every cycle.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, target_id: str) -> asyncio.Lock:
        """Lock of a target, created on first use."""
        lock = self._locks.get(target_id)
        if lock is None:
            lock = self._locks[target_id] = asyncio.Lock()
        return lock

    async def acquire(self, target_id: str, timeout: float) -> bool:
        """
        Acquire the lock of a target.

        Args:
            target_id: Target identifier
            timeout: Seconds to wait for the lock

        Returns:
            True if the lock was acquired, False on timeout
        """
        try:
            await asyncio.wait_for(self.get(target_id).acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def release(self, target_id: str) -> None:
        self._locks[target_id].release()

    def locked(self, target_id: str) -> bool:
        lock = self._locks.get(target_id)
        return bool(lock and lock.locked())


class ChangeMonitorService:
    """
    Service for continuous change detection.

    Each tick:
    1. Start a cycle for every active target whose poll interval elapsed
    2. Deliver due notification tasks
    """

    def __init__(
        self,
        registry: TargetRegistry,
        fetcher: Fetcher,
        store: SnapshotStore,
        changelog: ChangelogWriter,
        dispatcher: NotificationDispatcher,
        health: HealthStore,
        analyzer: Optional[ChangeAnalyzer] = None,
        classifier: Optional[SeverityClassifier] = None,
        worker: Optional[DeliveryWorker] = None,
        tick_seconds: int = 30,
        max_concurrent_targets: int = 5,
        fetch_retry_attempts: int = 3,
        fetch_retry_backoff_seconds: float = 2.0,
    ):
        """
        Initialize change monitor service.

        Args:
            registry: Source of active targets
            fetcher: Document fetcher
            store: Snapshot store
            changelog: Changelog writer
            dispatcher: Notification dispatcher
            health: Target health records
            analyzer: Diff engine (default: ChangeAnalyzer())
            classifier: Severity classifier (default: SeverityClassifier())
            worker: Delivery worker run after each tick, if any
            tick_seconds: Seconds between scheduling ticks
            max_concurrent_targets: Maximum cycles running in parallel
            fetch_retry_attempts: Fetch attempts per cycle for retryable errors
            fetch_retry_backoff_seconds: Base delay of the fetch backoff
        """
        self.registry = registry
        self.fetcher = fetcher
        self.store = store
        self.changelog = changelog
        self.dispatcher = dispatcher
        self.health = health
        self.analyzer = analyzer or ChangeAnalyzer()
        self.classifier = classifier or SeverityClassifier()
        self.worker = worker
        self.tick_seconds = tick_seconds
        self.max_concurrent_targets = max_concurrent_targets
        self.fetch_retry_attempts = fetch_retry_attempts
        self.fetch_retry_backoff_seconds = fetch_retry_backoff_seconds

        self.locks = TargetLocks()
        self.running = False
        self._last_started: Dict[str, datetime] = {}
        self._cycles: set = set()

    async def _fetch_with_retry(self, target: MonitoredTarget) -> CanonicalDocument:
        """Fetch a target, backing off exponentially on retryable errors."""
        attempt = 1
        while True:
            try:
                return await self.fetcher.fetch(target)
            except FetchError as e:
                if not e.retryable or attempt >= self.fetch_retry_attempts:
                    raise
                delay = self.fetch_retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Fetch attempt {attempt}/{self.fetch_retry_attempts} for "
                    f"{target.target_id} failed ({e.reason}), retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                attempt += 1

    def dispatch_entry(self, entry: ChangelogEntry) -> int:
        """
        Fan an entry out into notification tasks and complete its outbox row.

        Returns:
            Number of tasks of the entry
        """
        tasks = self.dispatcher.dispatch(entry)
        self.changelog.mark_dispatched(entry.entry_id)
        return len(tasks)

    async def run_cycle(
        self,
        target: MonitoredTarget,
        locks: Optional[TargetLocks] = None,
        lock_timeout: Optional[float] = None,
    ) -> CycleResult:
        """
        Run one full poll cycle for a target.

        Args:
            target: Target to poll
            locks: Lock map (default: the service's own)
            lock_timeout: Seconds to wait for the target lock
                (default: the target's poll interval)

        Returns:
            CycleResult; ``skipped`` if the lock could not be acquired in time
        """
        locks = locks or self.locks
        timeout = lock_timeout if lock_timeout is not None else target.poll_interval_seconds

        if not await locks.acquire(target.target_id, timeout):
            logger.warning(
                f"Skipping cycle for {target.target_id}: previous cycle still running "
                f"after {timeout}s"
            )
            return CycleResult(target.target_id, CycleStatus.SKIPPED)

        try:
            return await self._run_locked(target)
        finally:
            locks.release(target.target_id)

    async def _run_locked(self, target: MonitoredTarget) -> CycleResult:
        target_id = target.target_id
        try:
            document = await self._fetch_with_retry(target)
        except FetchError as e:
            status = (
                HealthStatus.DEGRADED if isinstance(e, InvalidDocumentError)
                else HealthStatus.UNREACHABLE
            )
            event = await asyncio.to_thread(self.record_health, target_id, status, str(e))
            return CycleResult(target_id, CycleStatus.FAILED, error=str(e), health_event=event)

        # SQLite calls block while another writer holds the database
        return await asyncio.to_thread(self._process, target_id, document)

    def record_health(
        self,
        target_id: str,
        status: HealthStatus,
        error: Optional[str] = None,
    ) -> Optional[HealthEvent]:
        """
        Record the outcome of a poll and alert subscribers when the target
        starts failing or recovers.

        Returns:
            The health event, if the poll changed the target's health
        """
        event = self.health.observe(target_id, status, error)
        if event is not None:
            self.dispatcher.dispatch_health(event)
        return event

    def _process(self, target_id: str, document: CanonicalDocument) -> CycleResult:
        """Persist a fetched document, then diff, record and dispatch its changes."""
        before = self.store.latest(target_id)
        snapshot_id = self.store.record(target_id, document)
        event = self.record_health(target_id, HealthStatus.HEALTHY)

        pair = self.store.latest_two(target_id)
        if pair is None:
            logger.info(f"Recorded baseline snapshot {snapshot_id} for {target_id}")
            return CycleResult(
                target_id, CycleStatus.BASELINE, snapshot_id=snapshot_id, health_event=event
            )

        previous, latest = pair
        unchanged = before is not None and before.snapshot_id == snapshot_id

        existing = self.changelog.find(target_id, previous.snapshot_id, latest.snapshot_id)
        if unchanged and existing is not None:
            logger.debug(f"No changes for {target_id}")
            return CycleResult(
                target_id, CycleStatus.UNCHANGED, snapshot_id=snapshot_id, health_event=event
            )

        if unchanged:
            logger.info(
                f"Comparing unprocessed snapshot pair for {target_id} "
                f"({previous.snapshot_id} -> {latest.snapshot_id})"
            )

        records = self.classifier.classify_all(self.analyzer.compare_snapshots(previous, latest))
        entry = self.changelog.write(target_id, previous.snapshot_id, latest.snapshot_id, records)
        if entry is None:
            return CycleResult(
                target_id, CycleStatus.UNCHANGED, snapshot_id=snapshot_id, health_event=event
            )

        tasks = self.dispatch_entry(entry)
        return CycleResult(
            target_id,
            CycleStatus.CHANGED,
            snapshot_id=snapshot_id,
            entry=entry,
            tasks=tasks,
            health_event=event,
        )

    def recover(self) -> int:
        """
        Dispatch changelog entries whose dispatch did not complete.

        Returns:
            Number of entries dispatched
        """
        recovered = 0
        while True:
            pending = self.changelog.pending_dispatch()
            if not pending:
                break
            for entry in pending:
                self.dispatch_entry(entry)
                recovered += 1

        if recovered:
            logger.info(f"Recovery pass dispatched {recovered} pending changelog entries")
        return recovered

    def due_targets(self, now: Optional[datetime] = None) -> List[MonitoredTarget]:
        """Active targets whose poll interval has elapsed."""
        now = now or datetime.utcnow()
        due = []
        for target in self.registry.get_active_targets():
            last = self._last_started.get(target.target_id)
            if last is None or now - last >= timedelta(seconds=target.poll_interval_seconds):
                due.append(target)
        return due

    async def _run_bounded(
        self, target: MonitoredTarget, semaphore: asyncio.Semaphore
    ) -> CycleResult:
        async with semaphore:
            try:
                return await self.run_cycle(target)
            except Exception as e:
                logger.error(f"Error in cycle for {target.target_id}: {e}", exc_info=True)
                return CycleResult(target.target_id, CycleStatus.FAILED, error=str(e))

    async def run_once(self) -> List[CycleResult]:
        """
        Poll every active target once, then deliver due notifications.

        Returns:
            Cycle results, one per active target
        """
        await asyncio.to_thread(self.recover)
        semaphore = asyncio.Semaphore(self.max_concurrent_targets)
        targets = self.registry.get_active_targets()

        results = await asyncio.gather(*(self._run_bounded(t, semaphore) for t in targets))

        if self.worker:
            await asyncio.to_thread(self.worker.run_once)

        changed = sum(1 for r in results if r.status == CycleStatus.CHANGED)
        logger.info(f"Poll complete: {len(results)} targets, {changed} changed")
        return list(results)

    async def run(self) -> None:
        """Run change monitor service continuously."""
        self.running = True
        logger.info(
            f"Starting change monitor service "
            f"(tick: {self.tick_seconds}s, max concurrent targets: {self.max_concurrent_targets})"
        )

        try:
            await asyncio.to_thread(self.recover)
            semaphore = asyncio.Semaphore(self.max_concurrent_targets)

            while self.running:
                now = datetime.utcnow()
                for target in self.due_targets(now):
                    self._last_started[target.target_id] = now
                    cycle = asyncio.create_task(self._run_bounded(target, semaphore))
                    self._cycles.add(cycle)
                    cycle.add_done_callback(self._cycles.discard)

                if self.worker:
                    try:
                        await asyncio.to_thread(self.worker.run_once)
                    except Exception as e:
                        logger.error(f"Error in delivery worker: {e}", exc_info=True)

                await asyncio.sleep(self.tick_seconds)

            if self._cycles:
                await asyncio.gather(*self._cycles, return_exceptions=True)
        finally:
            await self.close()

    async def close(self) -> None:
        """Close the document source and its connection pool."""
        await self.fetcher.source.close()

    def stop(self) -> None:
        """Stop change monitor service."""
        logger.info("Stopping change monitor service")
        self.running = False


def build_service(
    config: Optional[AppConfig] = None,
    registry: Optional[TargetRegistry] = None,
) -> ChangeMonitorService:
    """
    Wire a service from configuration.

    Args:
        config: Application configuration (default: global config)
        registry: Target registry (default: loaded from the configured YAML file)

    Returns:
        ChangeMonitorService
    """
    config = config or get_config()
    db_path = config.store.database_path
    order_fields = config.diff.order_significant_fields

    registry = registry or StaticTargetRegistry.from_yaml(config.scheduler.registry_path)
    fetcher = Fetcher(
        HttpDocumentSource(user_agent=config.fetcher.user_agent),
        timeout_seconds=config.fetcher.timeout_seconds,
        order_significant_fields=order_fields,
    )
    store = SnapshotStore(
        db_path,
        retention=config.store.snapshot_retention,
        order_significant_fields=order_fields,
    )
    changelog = ChangelogWriter(db_path)
    health = HealthStore(db_path)
    task_store = TaskStore(db_path)
    providers = build_providers(config.notifications, db_path)
    dispatcher = NotificationDispatcher(
        registry,
        task_store,
        max_attempts=config.notifications.max_attempts,
        backoff_base_seconds=config.notifications.backoff_base_seconds,
        backoff_max_seconds=config.notifications.backoff_max_seconds,
        enabled_channels=[c for c, p in providers.items() if p.is_enabled()],
    )
    worker = DeliveryWorker(
        dispatcher,
        task_store,
        changelog,
        registry,
        providers,
        dashboard_url=config.notifications.dashboard_url,
        health=health,
    )

    return ChangeMonitorService(
        registry=registry,
        fetcher=fetcher,
        store=store,
        changelog=changelog,
        dispatcher=dispatcher,
        health=health,
        worker=worker,
        tick_seconds=config.scheduler.tick_seconds,
        max_concurrent_targets=config.scheduler.max_concurrent_targets,
        fetch_retry_attempts=config.scheduler.fetch_retry_attempts,
        fetch_retry_backoff_seconds=config.scheduler.fetch_retry_backoff_seconds,
    )


def main() -> None:
    """Main entry point for change monitor service."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    config = get_config()

    logger.info("=" * 60)
    logger.info(f"specwatch {__version__} - Change Monitor Service")
    logger.info("=" * 60)
    logger.info(f"Database: {config.store.database_path}")
    logger.info(f"Registry: {config.scheduler.registry_path}")
    logger.info(f"Snapshot retention: {config.store.snapshot_retention}")
    logger.info(f"Max concurrent targets: {config.scheduler.max_concurrent_targets}")
    logger.info("=" * 60)

    service = build_service(config)

    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
        service.stop()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
