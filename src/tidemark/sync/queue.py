"""
Outbound queue reconciliation.

Pending records are submitted to the remote one at a time and each response
status decides the record's fate:

- 2xx: the record is synced (``POP``)
- 0: the remote was unreachable, nothing changes (``NO_CHANGE``)
- a retry code, or any code the policy does not know: one more attempt is
  counted (``RETRY``) until the budget is spent, then the record is replaced
- a replace code: the local edit is abandoned (``REPLACE``)

Replaced records are re-stamped with the replace sentinel and marked synced,
so the next pull re-acquires the remote's version.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from ..models import (
    Collection,
    Record,
    REPLACED_TIMESTAMP,
    SyncState,
    SYNC_ATTEMPTS_FIELD,
    generate_timestamp,
    wrap_for_write,
)
from ..models.record import (
    clear_sync_attempts,
    copy_record,
    set_sync_state,
    strip_engine_fields,
    sync_attempts_of,
)
from ..transport.base import RemoteTransport, NO_CONNECTION
from ..utils.config import SyncConfig
from ..utils.errors import RecordRejectedError, RemoteSyncError, RetryExhaustedError
from ..utils.logging import get_logger, MetricsLogger
from .callbacks import PendingCallbacks


logger = get_logger("tidemark.sync.queue")


class Outcome(Enum):
    """What a submission response means for the record."""
    POP = "pop"
    RETRY = "retry"
    REPLACE = "replace"
    NO_CHANGE = "no_change"


@dataclass(frozen=True)
class RetryPolicy:
    """Response code classification and retry budget."""
    retry_codes: FrozenSet[int] = frozenset({401, 500, 502})
    replace_codes: FrozenSet[int] = frozenset({400, 403, 404})
    max_retry: int = 3

    @classmethod
    def from_config(cls, config: SyncConfig) -> "RetryPolicy":
        return cls(
            retry_codes=frozenset(config.retry_codes),
            replace_codes=frozenset(config.replace_codes),
            max_retry=config.max_retry,
        )

    def classify(self, status: int) -> Outcome:
        if 200 <= status < 300:
            return Outcome.POP
        if status == NO_CONNECTION:
            return Outcome.NO_CHANGE
        if status in self.replace_codes:
            return Outcome.REPLACE
        # Retry codes and anything unrecognised
        return Outcome.RETRY


@dataclass
class SubmissionOutcome:
    """Result of submitting one queued record."""
    primary_key: Any
    status: int
    outcome: Outcome
    record: Record
    error: Optional[RemoteSyncError] = None


@dataclass
class DrainReport:
    """Everything that happened while draining one collection."""
    collection: str
    outcomes: List[SubmissionOutcome] = field(default_factory=list)

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for o in self.outcomes if o.outcome is outcome)

    @property
    def submitted(self) -> int:
        return len(self.outcomes)

    @property
    def popped(self) -> int:
        return self._count(Outcome.POP)

    @property
    def retried(self) -> int:
        return self._count(Outcome.RETRY)

    @property
    def replaced(self) -> int:
        return self._count(Outcome.REPLACE)

    @property
    def unchanged(self) -> int:
        return self._count(Outcome.NO_CHANGE)

    @property
    def exhausted(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o.error, RetryExhaustedError))

    @property
    def changed(self) -> bool:
        return any(o.outcome is not Outcome.NO_CHANGE for o in self.outcomes)

    def to_dict(self) -> Dict[str, int]:
        return {
            "submitted": self.submitted,
            "popped": self.popped,
            "retried": self.retried,
            "replaced": self.replaced,
            "unchanged": self.unchanged,
            "exhausted": self.exhausted,
        }


class QueueReconciler:
    """Drains a collection's pending records against the remote."""

    def __init__(
        self,
        transport: RemoteTransport,
        policy: RetryPolicy,
        callbacks: PendingCallbacks,
        metrics: Optional[MetricsLogger] = None
    ):
        self.transport = transport
        self.policy = policy
        self.callbacks = callbacks
        self.metrics = metrics

    async def drain(self, collection: Collection) -> DrainReport:
        """Submit creates then updates, one at a time, and merge the results.

        The caller persists the collection and then calls :meth:`settle`.
        """
        report = DrainReport(collection=collection.name)
        spec = collection.spec
        batches = (
            (collection.pending(SyncState.PENDING_CREATE), spec.create_endpoint),
            (collection.pending(SyncState.PENDING_UPDATE), spec.update_endpoint),
        )

        for records, endpoint in batches:
            for record in records:
                report.outcomes.append(await self._submit(collection, record, endpoint))

        collection.merge([o.record for o in report.outcomes if o.outcome is not Outcome.NO_CHANGE])

        if report.submitted:
            logger.info("collection_drained", collection=collection.name, **report.to_dict())
            if self.metrics:
                for name, count in report.to_dict().items():
                    self.metrics.log_count(f"queue.{name}", count, {"collection": collection.name})
        return report

    async def _submit(self, collection: Collection, record: Record, endpoint: str) -> SubmissionOutcome:
        key = collection.primary_key_of(record)
        payload = wrap_for_write(strip_engine_fields(record), collection.spec.write_wrapper)

        try:
            status = await self.transport.submit(endpoint, payload)
        except Exception as e:
            logger.error(
                "submit_raised",
                collection=collection.name,
                primary_key=key,
                error=str(e),
                error_type=type(e).__name__
            )
            status = NO_CONNECTION

        outcome = self.policy.classify(status)
        updated = copy_record(record)
        error: Optional[RemoteSyncError] = None

        if outcome is Outcome.POP:
            collection.set_timestamp(updated, generate_timestamp())
            set_sync_state(updated, SyncState.SYNCED)
            clear_sync_attempts(updated)
        elif outcome is Outcome.RETRY:
            attempts = sync_attempts_of(record) + 1
            updated[SYNC_ATTEMPTS_FIELD] = attempts
            if attempts > self.policy.max_retry:
                outcome = Outcome.REPLACE
                error = RetryExhaustedError(collection.name, key, status, attempts)
            else:
                logger.debug(
                    "submission_retry_scheduled",
                    collection=collection.name,
                    primary_key=key,
                    status=status,
                    attempts=attempts
                )
        elif outcome is Outcome.REPLACE:
            error = RecordRejectedError(collection.name, key, status)

        if outcome is Outcome.REPLACE:
            collection.set_timestamp(updated, REPLACED_TIMESTAMP)
            set_sync_state(updated, SyncState.SYNCED)
            clear_sync_attempts(updated)
            logger.warning(
                "record_replaced",
                collection=collection.name,
                primary_key=key,
                status=status,
                reason=error.code
            )

        return SubmissionOutcome(
            primary_key=key,
            status=status,
            outcome=outcome,
            record=updated,
            error=error
        )

    async def settle(self, report: DrainReport) -> None:
        """Fire the completion callbacks for records the drain resolved."""
        for o in report.outcomes:
            if o.outcome is Outcome.POP:
                await self.callbacks.resolve_synced(report.collection, o.primary_key, copy_record(o.record))
            elif o.outcome is Outcome.REPLACE:
                await self.callbacks.resolve_error(report.collection, o.primary_key, o.error)


__all__ = [
    'Outcome',
    'RetryPolicy',
    'SubmissionOutcome',
    'DrainReport',
    'QueueReconciler',
]
