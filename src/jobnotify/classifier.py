"""
Completion-edge detection for batch Job resources.

This module provides:
- The job data model (identity, snapshot, outcome, notification event)
- Conversion of Kubernetes Job objects into immutable snapshots
- The transition classifier deciding whether a success or failure edge
  occurred between two snapshots of the same job

Everything here is pure: no I/O, no shared state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, NamedTuple, Optional


JOB_CONDITION_FAILED = "Failed"
CONDITION_STATUS_TRUE = "True"


class MalformedSnapshotError(ValueError):
    """Raised when an object does not have the shape of a Job resource."""


class Outcome(str, Enum):
    """Terminal outcome of a job."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobIdentity(NamedTuple):
    """Stable (namespace, name) key of a job resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class JobSnapshot:
    """Observed state of one job resource at one point in time."""

    identity: JobIdentity
    succeeded_count: int = 0
    terminal_failure_observed: bool = False
    completion_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class NotificationEvent:
    """A terminal edge ready to be reported."""

    identity: JobIdentity
    outcome: Outcome
    observed_at: datetime


# =============================================================================
# Classification
# =============================================================================

def is_success_edge(previous: JobSnapshot, current: JobSnapshot) -> bool:
    """True only on the 0 -> positive transition of the succeeded count."""
    return previous.succeeded_count == 0 and current.succeeded_count > 0


def is_failure_edge(previous: JobSnapshot, current: JobSnapshot) -> bool:
    """True only when the Failed condition appears."""
    return (not previous.terminal_failure_observed) and current.terminal_failure_observed


def classify(previous: JobSnapshot, current: JobSnapshot) -> Optional[Outcome]:
    """
    Decide whether a terminal edge occurred between two snapshots.

    Both edges are one-way triggers, so a resync redelivering an already
    terminal state never fires again. When both edges appear in the same
    pair, success takes precedence.

    Args:
        previous: Snapshot before the update.
        current: Snapshot after the update.

    Returns:
        Outcome.SUCCEEDED, Outcome.FAILED, or None when no edge occurred.
    """
    if is_success_edge(previous, current):
        return Outcome.SUCCEEDED
    if is_failure_edge(previous, current):
        return Outcome.FAILED
    return None


def build_event(current: JobSnapshot, outcome: Outcome, now: datetime) -> NotificationEvent:
    """
    Build the notification event for an edge.

    Success uses the job's completion time when the cluster recorded one;
    failures (and successes without a completion time) use ``now``.
    """
    observed_at = now
    if outcome is Outcome.SUCCEEDED and current.completion_timestamp is not None:
        observed_at = current.completion_timestamp
    return NotificationEvent(identity=current.identity, outcome=outcome, observed_at=observed_at)


# =============================================================================
# Job object conversion
# =============================================================================

def _field(obj: Any, attr: str, key: Optional[str] = None) -> Any:
    """Read a field from a client model object or a raw JSON mapping."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key or attr)
    return getattr(obj, attr, None)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            raise MalformedSnapshotError(f"Invalid completion time: {value!r}") from None
    raise MalformedSnapshotError(f"Invalid completion time type: {type(value).__name__}")


def identity_of(job: Any) -> JobIdentity:
    """
    Extract the (namespace, name) identity of a job object.

    Raises:
        MalformedSnapshotError: If metadata or name is missing.
    """
    if job is None or isinstance(job, (str, bytes, int, float, bool)):
        raise MalformedSnapshotError(f"Not a job object: {type(job).__name__}")

    metadata = _field(job, "metadata")
    if metadata is None:
        raise MalformedSnapshotError("Job object has no metadata")

    name = _field(metadata, "name")
    namespace = _field(metadata, "namespace")
    if not isinstance(name, str) or not name:
        raise MalformedSnapshotError("Job metadata has no name")
    if namespace is None:
        namespace = ""
    if not isinstance(namespace, str):
        raise MalformedSnapshotError("Job metadata namespace is not a string")

    return JobIdentity(namespace=namespace, name=name)


def _has_failed_condition(conditions: Any) -> bool:
    if conditions is None:
        return False
    if isinstance(conditions, (str, bytes, Mapping)):
        raise MalformedSnapshotError("Job conditions must be a list")
    try:
        items = list(conditions)
    except TypeError:
        raise MalformedSnapshotError("Job conditions must be a list") from None

    for condition in items:
        if (
            _field(condition, "type") == JOB_CONDITION_FAILED
            and _field(condition, "status") == CONDITION_STATUS_TRUE
        ):
            return True
    return False


def snapshot_from_job(job: Any) -> JobSnapshot:
    """
    Convert a Job resource into a JobSnapshot.

    Accepts either a ``kubernetes.client.V1Job`` model or the equivalent raw
    mapping (camelCase keys, as returned in raw watch payloads). A missing
    status, succeeded count, or condition list means "nothing happened yet".

    Raises:
        MalformedSnapshotError: If the object does not have the shape of a Job.
    """
    identity = identity_of(job)
    status = _field(job, "status")

    succeeded = _field(status, "succeeded")
    if succeeded is None:
        succeeded = 0
    if isinstance(succeeded, bool) or not isinstance(succeeded, int):
        raise MalformedSnapshotError(
            f"Job {identity} has a non-integer succeeded count: {succeeded!r}"
        )

    return JobSnapshot(
        identity=identity,
        # A negative count is tolerated and reads as "not yet succeeded"
        succeeded_count=max(succeeded, 0),
        terminal_failure_observed=_has_failed_condition(_field(status, "conditions")),
        completion_timestamp=_parse_timestamp(
            _field(status, "completion_time", "completionTime")
        ),
    )


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)
