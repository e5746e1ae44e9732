"""
Notification coordinator.

Turns (previous, current) job snapshot pairs into at most one outbound
notification per job identity:

1. classify the pair (no edge -> nothing happens)
2. skip identities that already produced a notification
3. atomically mark the identity before any delivery attempt
4. apply the notification level policy
5. deliver once, bounded by a per-call deadline

A notification counts as attempted once it passes the gates. Delivery
errors are logged and dropped; they never unmark the identity, never
retry, and never stop the coordinator. Each attempt runs on its own daemon
thread, so a hung channel call cannot hold up attempts for other jobs.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from jobnotify.classifier import (
    JobSnapshot,
    MalformedSnapshotError,
    NotificationEvent,
    Outcome,
    build_event,
    classify,
    snapshot_from_job,
    utcnow,
)
from jobnotify.config import NotificationLevel
from jobnotify.dedup import DedupStore, InMemoryDedupStore
from jobnotify.notifiers import DeliveryError, Notifier, render_summary

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_TIMEOUT = 10.0


class HandleResult(str, Enum):
    """What ``handle`` did with a snapshot pair."""

    NO_EDGE = "no_edge"
    DUPLICATE = "duplicate"
    SUPPRESSED = "suppressed"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"
    MALFORMED = "malformed"


def admits(level: NotificationLevel, outcome: Outcome) -> bool:
    """Return True if the policy wants this outcome reported."""
    if outcome is Outcome.SUCCEEDED:
        return level.should_notify_success()
    return level.should_notify_failure()


class NotificationCoordinator:
    """
    Single point of truth for "has this job already been notified".

    The coordinator owns its dedup store; construct one per process and
    hand it to whatever drives the watch callbacks.

    Args:
        notifier: Outbound channel.
        level: Notification level policy.
        store: Dedup store (defaults to a fresh in-memory store).
        delivery_timeout: Deadline in seconds for each delivery attempt.
        clock: Returns "now" for failure timestamps.

    Example:
        >>> coordinator = NotificationCoordinator(SlackNotifier(url))
        >>> coordinator.handle(previous, current)
        <HandleResult.DELIVERED: 'delivered'>
    """

    def __init__(
        self,
        notifier: Notifier,
        level: NotificationLevel = NotificationLevel.ALL,
        store: Optional[DedupStore] = None,
        delivery_timeout: float = DEFAULT_DELIVERY_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.notifier = notifier
        self.level = NotificationLevel(level)
        self.store: DedupStore = store if store is not None else InMemoryDedupStore()
        self.delivery_timeout = delivery_timeout
        self.clock = clock
        self._closed = threading.Event()

    # -------------------------------------------------------------------------
    # Event handling
    # -------------------------------------------------------------------------

    def handle_update(self, old_obj: Any, new_obj: Any) -> HandleResult:
        """
        Handle a raw (old, new) Job object pair from the watch subsystem.

        Pairs that cannot be read as two snapshots of the same job are
        discarded without touching any state.
        """
        try:
            previous = snapshot_from_job(old_obj)
            current = snapshot_from_job(new_obj)
        except MalformedSnapshotError as exc:
            logger.debug(f"Discarding malformed job update: {exc}")
            return HandleResult.MALFORMED

        if previous.identity != current.identity:
            logger.debug(
                f"Discarding job update with mismatched identities "
                f"(previous={previous.identity}, current={current.identity})"
            )
            return HandleResult.MALFORMED

        return self.handle(previous, current)

    def handle(self, previous: JobSnapshot, current: JobSnapshot) -> HandleResult:
        """
        Process one snapshot pair.

        Returns:
            HandleResult describing which gate stopped the pair, or the
            delivery outcome when it passed every gate.
        """
        outcome = classify(previous, current)
        if outcome is None:
            return HandleResult.NO_EDGE

        identity = current.identity

        if self.store.contains(identity):
            logger.debug(f"Duplicate {outcome.value} edge suppressed (job={identity})")
            return HandleResult.DUPLICATE

        # Mark before delivery so a racing duplicate can never pass twice
        if not self.store.mark_added(identity):
            logger.debug(f"Duplicate {outcome.value} edge suppressed (job={identity}, race)")
            return HandleResult.DUPLICATE

        event = build_event(current, outcome, self.clock())

        if not admits(self.level, outcome):
            logger.debug(
                f"Job {outcome.value}, notification skipped by level "
                f"(job={identity}, level={self.level.value})"
            )
            return HandleResult.SUPPRESSED

        return self._deliver(event)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def _run_attempt(self, future: Future, event: NotificationEvent, summary: str) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            self.notifier.deliver(event, summary, self.delivery_timeout)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(None)

    def _start_attempt(self, event: NotificationEvent, summary: str) -> Future:
        """Run one delivery on its own daemon thread; the deadline starts now."""
        future: Future = Future()
        thread = threading.Thread(
            target=self._run_attempt,
            args=(future, event, summary),
            name=f"jobnotify-delivery-{event.identity}",
            daemon=True,
        )
        thread.start()
        return future

    def _deliver(self, event: NotificationEvent) -> HandleResult:
        identity = event.identity
        outcome = event.outcome.value
        observed = event.observed_at.isoformat()

        logger.info(
            f"Job {outcome}, sending notification "
            f"(job={identity}, observed_at={observed})"
        )

        if self._closed.is_set():
            logger.error(
                f"Failed to send {outcome} notification "
                f"(job={identity}, observed_at={observed}): coordinator is shut down"
            )
            return HandleResult.DELIVERY_FAILED

        future = self._start_attempt(event, render_summary(event))
        try:
            future.result(timeout=self.delivery_timeout)
        except FutureTimeoutError:
            if future.cancel():
                reason = "attempt never started"
            else:
                # The channel call keeps running on its daemon thread
                reason = f"deadline of {self.delivery_timeout}s exceeded"
            logger.error(
                f"Failed to send {outcome} notification "
                f"(job={identity}, observed_at={observed}): {reason}"
            )
            return HandleResult.DELIVERY_FAILED
        except DeliveryError as exc:
            logger.error(
                f"Failed to send {outcome} notification "
                f"(job={identity}, observed_at={observed}): {exc}"
            )
            return HandleResult.DELIVERY_FAILED
        except Exception as exc:
            logger.error(
                f"Failed to send {outcome} notification "
                f"(job={identity}, observed_at={observed}): unexpected error: {exc!r}"
            )
            return HandleResult.DELIVERY_FAILED

        logger.info(f"Notification sent (job={identity}, outcome={outcome})")
        return HandleResult.DELIVERED

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Stop delivering; in-flight attempts are abandoned, not drained."""
        if self._closed.is_set():
            return
        self._closed.set()

    def __enter__(self) -> "NotificationCoordinator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
