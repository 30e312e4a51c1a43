"""
Sync engine for Tidemark.

Runs the synchronisation cycle

    restore -> pull -> merge -> advance watermark -> drain -> finish

against a local store and a remote transport, and owns the caller-facing
operations (declare, mutate, read, wipe, subscribe). Everything runs on one
asyncio event loop; at most one cycle is in flight at any time and caller
operations issued meanwhile are deferred until it finishes.
"""

from dataclasses import dataclass, field, replace
import copy
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import asyncio
import time

from ..models import (
    Collection,
    CollectionRegistry,
    CollectionSpec,
    EPOCH,
    REPLACED_TIMESTAMP,
    Record,
    SyncState,
    generate_primary_key,
    generate_timestamp,
)
from ..models.record import copy_record, is_pending, set_sync_state, sync_state_of
from ..storage import LocalStore, create_store
from ..transport import HTTPTransport, RemoteTransport
from ..utils.config import ConfigLoader, SyncConfig, TidemarkConfig
from ..utils.errors import CollectionNotFoundError, PersistenceError, RecordSupersededError
from ..utils.logging import get_logger, MetricsLogger
from .callbacks import Callback, PendingCallbacks, call_handler
from .deferred import DeferredQueue
from .observers import ObserverRegistry
from .queue import DrainReport, QueueReconciler, RetryPolicy
from .watermark import (
    close_replaced,
    extract_records,
    has_newer_than,
    prepare_pulled,
    pull_window,
    raise_watermark,
    restore_candidate,
    shape_drifted,
)


logger = get_logger("tidemark.sync.engine")


class SyncPhase(Enum):
    """Where the current cycle is."""
    IDLE = "idle"
    RESTORING = "restoring"
    PULLING = "pulling"
    DRAINING = "draining"
    FINISHING = "finishing"


class SetupState(Enum):
    """Engine readiness. READY only after the first full cycle."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass
class SyncResult:
    """Summary of one sync cycle, handed to observers."""
    started_at: str
    last_checked: str
    finished_at: Optional[str] = None
    restored: bool = False
    pull_skipped: bool = False
    pulled: Dict[str, int] = field(default_factory=dict)
    failed_pulls: List[str] = field(default_factory=list)
    reset_collections: List[str] = field(default_factory=list)
    watermark_advanced: bool = False
    drained: Dict[str, DrainReport] = field(default_factory=dict)
    deferred_replayed: int = 0
    duration_ms: float = 0.0
    partial: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed_pulls

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "last_checked": self.last_checked,
            "restored": self.restored,
            "pull_skipped": self.pull_skipped,
            "pulled": dict(self.pulled),
            "failed_pulls": list(self.failed_pulls),
            "reset_collections": list(self.reset_collections),
            "watermark_advanced": self.watermark_advanced,
            "drained": {name: report.to_dict() for name, report in self.drained.items()},
            "deferred_replayed": self.deferred_replayed,
            "duration_ms": round(self.duration_ms, 3),
            "partial": self.partial,
            "error": self.error,
        }


class SyncEngine:
    """
    Offline-first synchronisation engine.

    Args:
        store: Local snapshot store; None runs memory-only
        transport: Remote transport; None disables remote access
        config: Synchronisation policy
        metrics: Optional metrics logger for cycle timings and queue outcomes
    """

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        transport: Optional[RemoteTransport] = None,
        config: Optional[SyncConfig] = None,
        metrics: Optional[MetricsLogger] = None
    ):
        self.store = store
        self.transport = transport
        self.config = config or SyncConfig()
        self.metrics = metrics

        self.collections = CollectionRegistry()
        self.observers = ObserverRegistry()
        self.callbacks = PendingCallbacks()
        self.deferred = DeferredQueue()
        self.reconciler = QueueReconciler(
            transport,
            RetryPolicy.from_config(self.config),
            self.callbacks,
            metrics
        )

        self.last_checked: str = EPOCH
        self.sync_in_progress = False
        self.setup_state = SetupState.UNINITIALIZED
        self.phase = SyncPhase.IDLE

        self._persistence_failed = False
        self._running = False
        self._push_requested = False
        self._auto_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []

    # Construction

    @classmethod
    def from_config(cls, config: TidemarkConfig, metrics: Optional[MetricsLogger] = None) -> "SyncEngine":
        """Engine with the configured store, HTTP transport and collections."""
        store = create_store(config.storage) if config.sync.allow_persistence else None
        transport = HTTPTransport.from_config(config.transport) if config.sync.allow_remote else None
        engine = cls(store=store, transport=transport, config=config.sync, metrics=metrics)
        for collection in config.collections:
            engine.declare_collection(**collection.model_dump())
        return engine

    def apply_sync_config(self, config: SyncConfig) -> None:
        """Adopt a new policy without restarting."""
        interval_changed = config.auto_sync_interval != self.config.auto_sync_interval
        self.config = config
        self.reconciler.policy = RetryPolicy.from_config(config)
        logger.info(
            "sync_config_applied",
            auto_sync_interval=config.auto_sync_interval,
            push_sync=config.push_sync,
            allow_remote=config.allow_remote,
            max_retry=config.max_retry
        )
        if self._running and interval_changed:
            self._restart_auto_sync()

    def watch_config(self, loader: ConfigLoader) -> None:
        """Apply sync policy from every configuration reload."""
        loader.register_callback(lambda new_config: self.apply_sync_config(new_config.sync))

    # State

    @property
    def remote_enabled(self) -> bool:
        return self.config.allow_remote and self.transport is not None

    @property
    def persistence_enabled(self) -> bool:
        return (
            self.config.allow_persistence
            and self.store is not None
            and not self._persistence_failed
        )

    @property
    def is_ready(self) -> bool:
        return self.setup_state is SetupState.READY

    def _must_defer(self) -> bool:
        return self.sync_in_progress or not self.is_ready or self.deferred.replaying

    # Collections

    def declare_collection(
        self,
        name: str,
        primary_key_field: str,
        timestamp_field: str,
        read_endpoint: str,
        create_endpoint: str,
        update_endpoint: Optional[str] = None,
        read_wrapper_path: Optional[str] = None,
        write_wrapper_path: Optional[str] = None
    ) -> CollectionSpec:
        """Declare a collection. Raises InvalidCollectionError or DuplicateCollectionError."""
        spec = CollectionSpec(
            name=name,
            primary_key_field=primary_key_field,
            timestamp_field=timestamp_field,
            read_endpoint=read_endpoint,
            create_endpoint=create_endpoint,
            update_endpoint=update_endpoint,
            read_wrapper_path=read_wrapper_path,
            write_wrapper_path=write_wrapper_path,
        )
        self.collections.declare(spec)
        return spec

    def collection_specs(self) -> List[Dict[str, Any]]:
        """Declared collections without their records."""
        return self.collections.specs()

    def subscribe(self, observer: Callback) -> None:
        self.observers.subscribe(observer)

    def unsubscribe(self, observer: Callback) -> bool:
        return self.observers.unsubscribe(observer)

    # Sync cycle

    async def sync(self) -> Optional[SyncResult]:
        """
        Run one sync cycle.

        Returns:
            The cycle result, or None when a cycle was already in flight
        """
        if self.sync_in_progress or self.deferred.replaying:
            logger.debug("sync_dropped", reason="cycle_in_progress", phase=self.phase.value)
            return None

        # Claimed before the first await
        self.sync_in_progress = True
        if self.setup_state is SetupState.UNINITIALIZED:
            self.setup_state = SetupState.INITIALIZING

        result = SyncResult(started_at=generate_timestamp(), last_checked=self.last_checked)
        started = time.monotonic()
        logger.info("sync_cycle_started", collections=len(self.collections), last_checked=self.last_checked)

        try:
            await self._run_cycle(result)
        except asyncio.CancelledError:
            self.sync_in_progress = False
            self.phase = SyncPhase.IDLE
            raise
        except Exception as e:
            logger.error(
                "sync_cycle_failed",
                phase=self.phase.value,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True
            )
            result.error = str(e)

        await self._finish(result, started)
        return result

    async def _run_cycle(self, result: SyncResult) -> None:
        if self._should_restore():
            self.phase = SyncPhase.RESTORING
            result.restored = await self.restore_from_persistence()
            result.last_checked = self.last_checked
            if result.restored and self.config.early_data_return:
                await self.observers.notify(replace(copy.deepcopy(result), partial=True))

        self.phase = SyncPhase.PULLING
        await self._pull_all(result)

        self.phase = SyncPhase.DRAINING
        await self._drain_all(result)

    def _should_restore(self) -> bool:
        if not self.persistence_enabled:
            return False
        if any(len(c) for c in self.collections):
            return False
        return not any(has_newer_than(c, self.last_checked) for c in self.collections)

    async def restore_from_persistence(self) -> bool:
        """Load persisted snapshots into declared collections and raise the watermark."""
        if not self.persistence_enabled:
            return False

        try:
            snapshots = await self.store.load_all()
        except PersistenceError as e:
            self._degrade(e)
            return False

        restored = 0
        for snapshot in snapshots:
            if snapshot.name not in self.collections:
                logger.warning("undeclared_snapshot_skipped", collection=snapshot.name)
                continue
            collection = self.collections.get(snapshot.name)
            collection.load_snapshot(snapshot)
            self.last_checked = raise_watermark(self.last_checked, restore_candidate(collection))
            restored += 1

        logger.info(
            "restored_from_persistence",
            collections=restored,
            records=self.collections.total_records(),
            last_checked=self.last_checked
        )
        return restored > 0

    async def _pull_all(self, result: SyncResult) -> None:
        if not self.remote_enabled or len(self.collections) == 0:
            result.pull_skipped = True
            logger.debug("pull_skipped", remote_enabled=self.remote_enabled)
            return

        # Window for the next cycle starts where this one started
        pull_started = generate_timestamp()

        for collection in self.collections:
            merged = await self._pull_collection(collection, result, pull_started)
            if merged is None:
                result.failed_pulls.append(collection.name)
            else:
                result.pulled[collection.name] = merged

        if not result.failed_pulls:
            previous = self.last_checked
            self.last_checked = raise_watermark(self.last_checked, pull_started)
            result.watermark_advanced = self.last_checked != previous
        else:
            logger.warning("watermark_held", failed=result.failed_pulls, last_checked=self.last_checked)
        result.last_checked = self.last_checked

    async def _fetch(self, collection: Collection, since: str):
        """(records, envelope) for a pull from ``since``, or None when the pull failed."""
        spec = collection.spec
        try:
            response = await self.transport.fetch(spec.read_endpoint, since)
        except Exception as e:
            logger.error(
                "collection_pull_failed",
                collection=collection.name,
                error=str(e),
                error_type=type(e).__name__
            )
            return None

        if not response.ok:
            logger.warning("collection_pull_failed", collection=collection.name, status=response.status)
            return None

        try:
            return extract_records(response.data, spec)
        except ValueError as e:
            logger.warning("collection_pull_unreadable", collection=collection.name, error=str(e))
            return None

    async def _pull_collection(self, collection: Collection, result: SyncResult, pulled_at: str) -> Optional[int]:
        since = pull_window(collection, self.last_checked)
        fetched = await self._fetch(collection, since)
        if fetched is None:
            return None
        records, envelope = fetched

        reset = False
        if self.config.schema_drift_reset and shape_drifted(collection, records):
            logger.warning("schema_drift_detected", collection=collection.name)
            fetched = await self._fetch(collection, EPOCH)
            if fetched is None:
                return None
            records, envelope = fetched
            reset = True

        prepared = prepare_pulled(records, collection)
        superseded = self._superseded_keys(collection, prepared, reset)
        if reset:
            collection.clear()
            result.reset_collections.append(collection.name)
        if envelope is not None:
            collection.envelope = envelope
        merge = collection.merge(prepared)
        # A full pull that did not return a replaced record closes its window
        if reset or since == REPLACED_TIMESTAMP:
            close_replaced(collection, pulled_at)
        await self._persist(collection)

        logger.info(
            "collection_pulled",
            collection=collection.name,
            since=since,
            created=merge.created,
            updated=merge.updated,
            skipped=merge.skipped
        )

        for key in superseded:
            logger.warning("pending_record_superseded", collection=collection.name, primary_key=key)
            await self.callbacks.resolve_error(
                collection.name, key, RecordSupersededError(collection.name, key)
            )
        return merge.total

    def _superseded_keys(self, collection: Collection, pulled: List[Record], reset: bool) -> List[Any]:
        """Keys of queued local records that this pull overwrites or, on reset, drops."""
        if reset:
            return [collection.primary_key_of(r) for r in collection.records if is_pending(r)]
        keys = []
        for record in pulled:
            key = collection.primary_key_of(record)
            local = collection.get(key) if key is not None else None
            if local is not None and is_pending(local) and key not in keys:
                keys.append(key)
        return keys

    async def _drain_all(self, result: SyncResult) -> None:
        if not self.remote_enabled:
            return
        for collection in self.collections:
            report = await self.reconciler.drain(collection)
            if report.changed:
                await self._persist(collection)
            await self.reconciler.settle(report)
            result.drained[collection.name] = report

    async def _finish(self, result: SyncResult, started: float) -> None:
        self.phase = SyncPhase.FINISHING
        self.setup_state = SetupState.READY
        self.sync_in_progress = False

        result.finished_at = generate_timestamp()
        result.duration_ms = (time.monotonic() - started) * 1000
        result.last_checked = self.last_checked

        self._push_requested = False
        result.deferred_replayed = await self.deferred.replay()

        self.phase = SyncPhase.IDLE
        logger.info(
            "sync_cycle_completed",
            duration_ms=round(result.duration_ms, 3),
            restored=result.restored,
            failed_pulls=result.failed_pulls,
            last_checked=self.last_checked,
            deferred_replayed=result.deferred_replayed,
            error=result.error
        )
        if self.metrics:
            self.metrics.log_duration("sync.cycle", result.duration_ms, {"ok": str(result.ok).lower()})
            self.metrics.log_gauge("sync.records", self.collections.total_records())

        await self.observers.notify(result)

        # Replayed mutations asked for a push while replay held cycles off
        if self._push_requested:
            self._push_requested = False
            self.schedule_sync()

    def schedule_sync(self) -> Optional[asyncio.Task]:
        """Run a cycle in the background; no-op without a running loop."""
        try:
            task = asyncio.get_running_loop().create_task(self.sync())
        except RuntimeError:
            return None
        self._tasks.append(task)
        task.add_done_callback(self._forget_task)
        return task

    def _forget_task(self, task: asyncio.Task) -> None:
        if task in self._tasks:
            self._tasks.remove(task)

    # Caller operations

    async def mutate(
        self,
        record: Record,
        collection_name: str,
        on_accepted: Optional[Callback] = None,
        on_synced: Optional[Callback] = None,
        on_error: Optional[Callback] = None
    ) -> bool:
        """
        Create or update a record locally and queue it for the remote.

        Returns:
            True when applied now, False when deferred until the current
            cycle finishes
        """
        record = copy_record(record)
        if self._must_defer():
            self.deferred.enqueue(
                "mutate", self._apply_mutation,
                record, collection_name, on_accepted, on_synced, on_error
            )
            return False
        await self._apply_mutation(record, collection_name, on_accepted, on_synced, on_error)
        return True

    async def _apply_mutation(
        self,
        record: Record,
        collection_name: str,
        on_accepted: Optional[Callback],
        on_synced: Optional[Callback],
        on_error: Optional[Callback]
    ) -> Optional[Record]:
        try:
            collection = self.collections.get(collection_name)
        except CollectionNotFoundError as e:
            logger.warning("mutation_rejected", collection=collection_name, reason="unknown_collection")
            await call_handler(on_error, e, event="on_error", collection=collection_name)
            return None

        record = copy_record(record)
        key = collection.primary_key_of(record)
        stored = collection.get(key) if key is not None else None

        state = sync_state_of(record)
        if state is None and stored is not None:
            state = sync_state_of(stored)
        if state is None:
            state = SyncState.PENDING_CREATE
        elif state is SyncState.SYNCED:
            state = SyncState.PENDING_UPDATE

        if key is None:
            key = generate_primary_key()
            collection.set_primary_key(record, key)

        set_sync_state(record, state)
        collection.set_timestamp(record, generate_timestamp())

        self.callbacks.register(collection_name, key, on_synced, on_error)
        collection.merge([record])
        await self._persist(collection)

        logger.debug("record_mutated", collection=collection_name, primary_key=key, sync_state=state.name)

        if self.config.push_sync:
            if self.deferred.replaying:
                self._push_requested = True
            else:
                self.schedule_sync()

        await call_handler(on_accepted, copy_record(record), event="on_accepted", collection=collection_name)
        return record

    async def read_collection(self, name: str, callback: Callback) -> bool:
        """
        Hand the collection's records (re-wrapped in their envelope, if any) to ``callback``.

        Raises CollectionNotFoundError for undeclared names. Returns False
        when the read was deferred.
        """
        self.collections.get(name)
        if self._must_defer():
            self.deferred.enqueue("read_collection", self._read, name, callback)
            return False
        await self._read(name, callback)
        return True

    async def _read(self, name: str, callback: Callback) -> None:
        collection = self.collections.get(name)
        await call_handler(callback, collection.read(), event="read_collection", collection=name)

    async def wipe(self) -> bool:
        """Clear local data and reset the watermark; declarations are kept."""
        if self._must_defer():
            self.deferred.enqueue("wipe", self._wipe)
            return False
        await self._wipe()
        return True

    async def _wipe(self) -> None:
        if self.persistence_enabled:
            try:
                await self.store.delete_all_data()
            except PersistenceError as e:
                self._degrade(e)
        for collection in self.collections:
            collection.clear()
        self.callbacks.clear()
        self.last_checked = EPOCH
        logger.info("local_data_wiped", collections=len(self.collections))

    # Persistence

    async def _persist(self, collection: Collection) -> None:
        if not self.persistence_enabled:
            return
        try:
            await self.store.replace_collection(collection.name, collection.to_snapshot())
        except PersistenceError as e:
            self._degrade(e)

    def _degrade(self, error: PersistenceError) -> None:
        self._persistence_failed = True
        logger.error(
            "persistence_degraded",
            store=getattr(self.store, "name", type(self.store).__name__),
            error=str(error),
            mode="memory_only"
        )

    # Lifecycle

    async def start(self) -> Optional[SyncResult]:
        """Open the store, run the first cycle and start auto-sync if configured."""
        if self._running:
            return None
        self._running = True
        if self.setup_state is SetupState.UNINITIALIZED:
            self.setup_state = SetupState.INITIALIZING
        logger.info("starting_engine", collections=self.collections.names())

        if self.persistence_enabled:
            try:
                await self.store.open()
            except PersistenceError as e:
                self._degrade(e)

        result = await self.sync()
        self._restart_auto_sync()
        return result

    def _restart_auto_sync(self) -> None:
        if self._auto_task and not self._auto_task.done():
            self._auto_task.cancel()
        self._auto_task = None
        if self.config.auto_sync_interval > 0:
            self._auto_task = asyncio.get_running_loop().create_task(self._auto_sync_loop())

    async def _auto_sync_loop(self) -> None:
        """Background task running a cycle every ``auto_sync_interval`` seconds."""
        while self._running and self.config.auto_sync_interval > 0:
            await asyncio.sleep(self.config.auto_sync_interval)
            try:
                await self.sync()
            except Exception as e:
                logger.error("auto_sync_error", error=str(e))

    async def stop(self) -> None:
        """Cancel background cycles and close the transport and store."""
        if not self._running:
            logger.warning("stop_called_when_not_running")
        self._running = False
        logger.info("stopping_engine")

        tasks = list(self._tasks)
        if self._auto_task:
            tasks.append(self._auto_task)
        for task in tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._auto_task = None
        self._tasks.clear()
        self.deferred.clear()

        if self.transport is not None:
            await self.transport.close()
        if self.store is not None:
            try:
                await self.store.close()
            except PersistenceError as e:
                logger.error("store_close_failed", error=str(e))
        logger.info("engine_stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


__all__ = [
    'SyncEngine',
    'SyncResult',
    'SyncPhase',
    'SetupState',
]
