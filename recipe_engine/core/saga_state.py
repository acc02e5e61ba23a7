"""Pure saga state transitions.

Every function takes a ``SagaState`` and returns a new one; nothing here
touches storage. The orchestrator persists each returned value under the
concurrency token check.

Status order: DISCOVERING, then the per-URL phases (FINGERPRINTING,
PROCESSING, PERSISTING) which cycle once per URL and share one rank, then
COMPLETED. FAILED is reachable from any non-terminal status. Terminal
states accept no transitions.
"""

from datetime import UTC, datetime, timedelta
from typing import Iterable

from recipe_engine.core.enums import BatchCompletionReason, SagaStatus
from recipe_engine.core.errors import InvalidArgumentError, InvalidStateTransitionError
from recipe_engine.core.schema import SagaState

_STATUS_RANK: dict[SagaStatus, int] = {
    SagaStatus.DISCOVERING: 0,
    SagaStatus.FINGERPRINTING: 1,
    SagaStatus.PROCESSING: 1,
    SagaStatus.PERSISTING: 1,
    SagaStatus.COMPLETED: 2,
}

# Allowed moves inside the per-URL cycle
_URL_CYCLE: dict[SagaStatus, set[SagaStatus]] = {
    SagaStatus.FINGERPRINTING: {SagaStatus.PROCESSING},
    SagaStatus.PROCESSING: {SagaStatus.PERSISTING, SagaStatus.FINGERPRINTING},
    SagaStatus.PERSISTING: {SagaStatus.FINGERPRINTING},
}

MAX_ERROR_MESSAGE_LENGTH = 2000


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _ensure_active(state: SagaState) -> None:
    if state.is_terminal:
        raise InvalidStateTransitionError(
            f"Batch {state.batch_id} is {state.status.value}; no further transitions allowed"
        )


def new_saga_state(
    provider_id: str,
    batch_size: int,
    time_window: timedelta,
    now: datetime | None = None,
) -> SagaState:
    """Create the initial state of a batch (status DISCOVERING)."""
    if not provider_id or not provider_id.strip():
        raise InvalidArgumentError("provider_id is required")
    if batch_size <= 0:
        raise InvalidArgumentError("batch_size must be positive")
    if time_window <= timedelta(0):
        raise InvalidArgumentError("time_window must be positive")

    started_at = now or _utc_now()
    return SagaState(
        provider_id=provider_id,
        batch_size=batch_size,
        started_at=started_at,
        deadline=started_at + time_window,
        updated_at=started_at,
    )


def advance(state: SagaState, status: SagaStatus, now: datetime | None = None) -> SagaState:
    """
    Move to a new non-terminal status.

    Raises:
        InvalidStateTransitionError: if the move goes backwards or the state is terminal.
    """
    _ensure_active(state)
    if status in (SagaStatus.COMPLETED, SagaStatus.FAILED):
        raise InvalidStateTransitionError(
            f"Use complete()/fail() to move batch {state.batch_id} to {status.value}"
        )
    if status == state.status:
        return state

    current_rank = _STATUS_RANK[state.status]
    new_rank = _STATUS_RANK[status]
    if new_rank < current_rank:
        raise InvalidStateTransitionError(
            f"Cannot move batch {state.batch_id} back from {state.status.value} to {status.value}"
        )
    if new_rank == current_rank and status not in _URL_CYCLE.get(state.status, set()):
        raise InvalidStateTransitionError(
            f"Cannot move batch {state.batch_id} from {state.status.value} to {status.value}"
        )

    return state.model_copy(update={"status": status, "updated_at": now or _utc_now()})


def record_discovery(
    state: SagaState,
    urls: Iterable[str],
    now: datetime | None = None,
) -> SagaState:
    """
    Store discovered URLs as pending and move on to fingerprinting.

    URLs are de-duplicated in first-seen order, URLs already attempted in
    this batch are dropped, and at most ``batch_size`` are kept.
    """
    _ensure_active(state)
    if state.status != SagaStatus.DISCOVERING:
        raise InvalidStateTransitionError(
            f"Discovery results can only be recorded while discovering (batch is {state.status.value})"
        )

    attempted = set(state.processed_urls) | set(state.failed_urls)
    pending: list[str] = []
    seen: set[str] = set()
    for url in urls:
        url = url.strip()
        if not url or url in seen or url in attempted:
            continue
        seen.add(url)
        pending.append(url)
        if len(pending) >= state.batch_size:
            break

    return state.model_copy(
        update={
            "pending_urls": tuple(pending),
            "status": SagaStatus.FINGERPRINTING,
            "updated_at": now or _utc_now(),
        }
    )


def _take_pending(state: SagaState, url: str) -> tuple[str, ...]:
    if url not in state.pending_urls:
        raise InvalidStateTransitionError(f"URL is not pending in batch {state.batch_id}: {url}")
    return tuple(u for u in state.pending_urls if u != url)


def record_processed(state: SagaState, url: str, now: datetime | None = None) -> SagaState:
    """A URL produced a persisted recipe."""
    _ensure_active(state)
    pending = _take_pending(state, url)
    counts = state.counts.model_copy(update={"processed": state.counts.processed + 1})
    return state.model_copy(
        update={
            "pending_urls": pending,
            "processed_urls": state.processed_urls + (url,),
            "counts": counts,
            "status": SagaStatus.FINGERPRINTING,
            "updated_at": now or _utc_now(),
        }
    )


def record_skipped(state: SagaState, url: str, now: datetime | None = None) -> SagaState:
    """A URL was a duplicate of a known fingerprint."""
    _ensure_active(state)
    pending = _take_pending(state, url)
    counts = state.counts.model_copy(update={"skipped": state.counts.skipped + 1})
    return state.model_copy(
        update={
            "pending_urls": pending,
            "processed_urls": state.processed_urls + (url,),
            "counts": counts,
            "status": SagaStatus.FINGERPRINTING,
            "updated_at": now or _utc_now(),
        }
    )


def record_failed(state: SagaState, url: str, now: datetime | None = None) -> SagaState:
    """A URL failed permanently or exhausted its retries."""
    _ensure_active(state)
    pending = _take_pending(state, url)
    counts = state.counts.model_copy(update={"failed": state.counts.failed + 1})
    return state.model_copy(
        update={
            "pending_urls": pending,
            "failed_urls": state.failed_urls + (url,),
            "counts": counts,
            "status": SagaStatus.FINGERPRINTING,
            "updated_at": now or _utc_now(),
        }
    )


def complete(
    state: SagaState,
    reason: BatchCompletionReason,
    now: datetime | None = None,
) -> SagaState:
    """Finish the batch. Remaining pending URLs mark it as a partial completion."""
    _ensure_active(state)
    timestamp = now or _utc_now()
    return state.model_copy(
        update={
            "status": SagaStatus.COMPLETED,
            "partial": bool(state.pending_urls),
            "completion_reason": reason,
            "completed_at": timestamp,
            "updated_at": timestamp,
        }
    )


def fail(
    state: SagaState,
    category: str,
    message: str,
    now: datetime | None = None,
) -> SagaState:
    """Mark the batch as failed with the fatal error's category and message."""
    _ensure_active(state)
    timestamp = now or _utc_now()
    message = (message or category).strip()[:MAX_ERROR_MESSAGE_LENGTH]
    return state.model_copy(
        update={
            "status": SagaStatus.FAILED,
            "completion_reason": BatchCompletionReason.FAILED,
            "error_category": category,
            "error_message": message,
            "completed_at": timestamp,
            "updated_at": timestamp,
        }
    )


def is_deadline_exceeded(state: SagaState, now: datetime | None = None) -> bool:
    """The deadline is fixed at creation and never extended on resume."""
    return (now or _utc_now()) >= state.deadline
