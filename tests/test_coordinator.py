"""Tests for jobnotify.coordinator module."""

import logging
import threading
import time
from datetime import datetime, timezone

import pytest

from jobnotify.classifier import JobIdentity, JobSnapshot, Outcome
from jobnotify.config import NotificationLevel
from jobnotify.coordinator import HandleResult, NotificationCoordinator, admits
from jobnotify.dedup import InMemoryDedupStore
from jobnotify.notifiers import DeliveryError


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
IDENTITY = JobIdentity(namespace="batch", name="nightly-report")


class _FakeNotifier:
    """Records deliveries; optionally fails or blocks."""

    def __init__(self, error=None, block=None):
        self.calls = []
        self.error = error
        self.block = block
        self._lock = threading.Lock()

    def deliver(self, event, summary, timeout):
        with self._lock:
            self.calls.append((event, summary, timeout))
        if self.block is not None:
            self.block.wait(5)
        if self.error is not None:
            raise self.error


def _snap(succeeded=0, failed=False, identity=IDENTITY, completed_at=None) -> JobSnapshot:
    return JobSnapshot(
        identity=identity,
        succeeded_count=succeeded,
        terminal_failure_observed=failed,
        completion_timestamp=completed_at,
    )


@pytest.fixture
def notifier():
    return _FakeNotifier()


def _coordinator(notifier, level=NotificationLevel.ALL, **kwargs) -> NotificationCoordinator:
    coordinator = NotificationCoordinator(notifier, level=level, clock=lambda: NOW, **kwargs)
    return coordinator


class TestScenarios:
    """End-to-end handling scenarios."""

    def test_a_success_edge_delivers_once(self, notifier):
        coordinator = _coordinator(notifier)
        result = coordinator.handle(_snap(0), _snap(1))

        assert result is HandleResult.DELIVERED
        assert len(notifier.calls) == 1
        event, summary, timeout = notifier.calls[0]
        assert event.outcome is Outcome.SUCCEEDED
        assert event.identity == IDENTITY
        assert event.observed_at == NOW
        assert "nightly-report" in summary
        assert timeout == 10.0

    def test_b_resync_after_success_is_silent(self, notifier):
        coordinator = _coordinator(notifier)
        coordinator.handle(_snap(0), _snap(1))
        result = coordinator.handle(_snap(1), _snap(1))

        assert result is HandleResult.NO_EDGE
        assert len(notifier.calls) == 1

    def test_c_failure_under_failed_only(self, notifier):
        coordinator = _coordinator(notifier, level=NotificationLevel.FAILED)
        result = coordinator.handle(_snap(failed=False), _snap(failed=True))

        assert result is HandleResult.DELIVERED
        assert len(notifier.calls) == 1
        assert notifier.calls[0][0].outcome is Outcome.FAILED

    def test_d_success_suppressed_under_failed_only(self, notifier):
        coordinator = _coordinator(notifier, level=NotificationLevel.FAILED)
        result = coordinator.handle(_snap(0), _snap(1))

        assert result is HandleResult.SUPPRESSED
        assert notifier.calls == []

    def test_e_concurrent_distinct_identities(self, notifier):
        """Every identity gets exactly one delivery under concurrent handling."""
        coordinator = _coordinator(notifier)
        identities = [JobIdentity("ns", f"job-{i}") for i in range(200)]
        barrier = threading.Barrier(8)

        def worker(chunk):
            barrier.wait()
            for identity in chunk:
                # repeated deliveries of the same edge plus resync pairs
                coordinator.handle(_snap(0, identity=identity), _snap(1, identity=identity))
                coordinator.handle(_snap(1, identity=identity), _snap(1, identity=identity))
                coordinator.handle(_snap(0, identity=identity), _snap(1, identity=identity))

        threads = [threading.Thread(target=worker, args=(identities[i::8],)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        coordinator.close()

        delivered = [call[0].identity for call in notifier.calls]
        assert len(delivered) == 200
        assert set(delivered) == set(identities)
        assert len(coordinator.store) == 200


class TestProperties:
    """Idempotence and policy properties."""

    @pytest.mark.parametrize("failed", [False, True])
    def test_no_change_never_delivers(self, notifier, failed):
        coordinator = _coordinator(notifier)
        for _ in range(3):
            assert coordinator.handle(_snap(0, failed), _snap(0, failed)) is HandleResult.NO_EDGE
        assert notifier.calls == []
        assert len(coordinator.store) == 0

    def test_repeated_edge_delivers_at_most_once(self, notifier):
        coordinator = _coordinator(notifier)
        results = [coordinator.handle(_snap(0), _snap(1)) for _ in range(5)]

        assert results[0] is HandleResult.DELIVERED
        assert results[1:] == [HandleResult.DUPLICATE] * 4
        assert len(notifier.calls) == 1

    def test_first_edge_wins(self, notifier):
        """After a success notification a later failure edge is suppressed."""
        coordinator = _coordinator(notifier)
        coordinator.handle(_snap(0, False), _snap(1, False))
        result = coordinator.handle(_snap(1, False), _snap(1, True))

        assert result is HandleResult.DUPLICATE
        assert [call[0].outcome for call in notifier.calls] == [Outcome.SUCCEEDED]

    def test_suppressed_success_still_marks_identity(self, notifier):
        """Under FailedOnly the first (success) edge claims the identity."""
        coordinator = _coordinator(notifier, level=NotificationLevel.FAILED)
        coordinator.handle(_snap(0, False), _snap(1, False))
        result = coordinator.handle(_snap(1, False), _snap(1, True))

        assert result is HandleResult.DUPLICATE
        assert notifier.calls == []

    def test_policy_all_delivers_both_outcomes(self, notifier):
        coordinator = _coordinator(notifier)
        a = JobIdentity("ns", "a")
        b = JobIdentity("ns", "b")
        coordinator.handle(_snap(0, identity=a), _snap(1, identity=a))
        coordinator.handle(_snap(identity=b), _snap(failed=True, identity=b))

        assert [call[0].outcome for call in notifier.calls] == [Outcome.SUCCEEDED, Outcome.FAILED]

    def test_simultaneous_edges_report_success(self, notifier):
        """Documented tie-break: success wins when both edges appear in one pair."""
        coordinator = _coordinator(notifier)
        coordinator.handle(_snap(0, False), _snap(1, True))
        assert notifier.calls[0][0].outcome is Outcome.SUCCEEDED

    def test_success_uses_completion_time(self, notifier):
        completed = datetime(2026, 10, 19, 11, 58, tzinfo=timezone.utc)
        coordinator = _coordinator(notifier)
        coordinator.handle(_snap(0), _snap(1, completed_at=completed))
        assert notifier.calls[0][0].observed_at == completed

    def test_concurrent_same_identity_single_delivery(self, notifier):
        """Even if the per-job ordering guarantee is violated, one delivery."""
        coordinator = _coordinator(notifier)
        barrier = threading.Barrier(12)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            result = coordinator.handle(_snap(0), _snap(1))
            with results_lock:
                results.append(result)

        threads = [threading.Thread(target=worker) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(HandleResult.DELIVERED) == 1
        assert results.count(HandleResult.DUPLICATE) == 11
        assert len(notifier.calls) == 1


class TestDeliveryFailures:
    """Delivery errors are logged, never retried, never propagated."""

    def test_delivery_error_keeps_identity_marked(self, caplog):
        notifier = _FakeNotifier(error=DeliveryError("HTTP 500", status_code=500))
        coordinator = _coordinator(notifier)

        with caplog.at_level(logging.ERROR, logger="jobnotify.coordinator"):
            first = coordinator.handle(_snap(0), _snap(1))
        second = coordinator.handle(_snap(0), _snap(1))

        assert first is HandleResult.DELIVERY_FAILED
        assert second is HandleResult.DUPLICATE
        assert len(notifier.calls) == 1
        assert "batch/nightly-report" in caplog.text
        assert "HTTP 500" in caplog.text

    def test_unexpected_exception_is_contained(self):
        notifier = _FakeNotifier(error=ConnectionResetError("reset"))
        coordinator = _coordinator(notifier)

        assert coordinator.handle(_snap(0), _snap(1)) is HandleResult.DELIVERY_FAILED
        # later events for other jobs still go through
        notifier.error = None
        other = JobIdentity("ns", "other")
        assert coordinator.handle(_snap(identity=other), _snap(failed=True, identity=other)) is HandleResult.DELIVERED

    def test_deadline_overrun_abandons_attempt(self, caplog):
        release = threading.Event()
        notifier = _FakeNotifier(block=release)
        coordinator = _coordinator(notifier, delivery_timeout=0.05)

        started = time.monotonic()
        with caplog.at_level(logging.ERROR, logger="jobnotify.coordinator"):
            result = coordinator.handle(_snap(0), _snap(1))
        elapsed = time.monotonic() - started
        release.set()

        assert result is HandleResult.DELIVERY_FAILED
        assert elapsed < 2
        assert "deadline" in caplog.text
        assert coordinator.store.contains(IDENTITY)
        assert coordinator.handle(_snap(0), _snap(1)) is HandleResult.DUPLICATE
        coordinator.close()

    def test_hung_deliveries_do_not_starve_other_jobs(self, caplog):
        """Attempts that overran their deadline leave later jobs unaffected."""
        release = threading.Event()
        calls = []
        lock = threading.Lock()

        class _HangingNotifier:
            def deliver(self, event, summary, timeout):
                with lock:
                    calls.append(event.identity.name)
                if event.identity.name.startswith("hung-"):
                    release.wait(5)

        coordinator = _coordinator(_HangingNotifier(), delivery_timeout=0.2)
        try:
            for i in range(6):
                hung = JobIdentity("ns", f"hung-{i}")
                assert coordinator.handle(_snap(identity=hung), _snap(1, identity=hung)) is (
                    HandleResult.DELIVERY_FAILED
                )

            healthy = JobIdentity("ns", "healthy")
            with caplog.at_level(logging.ERROR, logger="jobnotify.coordinator"):
                result = coordinator.handle(_snap(identity=healthy), _snap(1, identity=healthy))
        finally:
            release.set()
            coordinator.close()

        assert result is HandleResult.DELIVERED
        assert calls == [f"hung-{i}" for i in range(6)] + ["healthy"]
        assert "ns/healthy" not in caplog.text

    def test_closed_coordinator_marks_but_does_not_deliver(self, notifier):
        coordinator = _coordinator(notifier)
        coordinator.close()

        assert coordinator.closed
        assert coordinator.handle(_snap(0), _snap(1)) is HandleResult.DELIVERY_FAILED
        assert notifier.calls == []
        assert coordinator.store.contains(IDENTITY)

    def test_context_manager_closes(self, notifier):
        with _coordinator(notifier) as coordinator:
            coordinator.handle(_snap(0), _snap(1))
        assert coordinator.closed
        assert len(notifier.calls) == 1


class TestHandleUpdate:
    """Raw object handling."""

    def _job(self, succeeded=0, name="nightly-report", namespace="batch"):
        return {"metadata": {"name": name, "namespace": namespace}, "status": {"succeeded": succeeded}}

    def test_raw_pair_delivers(self, notifier):
        coordinator = _coordinator(notifier)
        assert coordinator.handle_update(self._job(0), self._job(1)) is HandleResult.DELIVERED
        assert notifier.calls[0][0].identity == IDENTITY

    def test_malformed_pair_discarded(self, notifier):
        coordinator = _coordinator(notifier)
        assert coordinator.handle_update("not-a-job", self._job(1)) is HandleResult.MALFORMED
        assert coordinator.handle_update(self._job(0), {"metadata": {}}) is HandleResult.MALFORMED
        assert notifier.calls == []
        assert len(coordinator.store) == 0

    def test_mismatched_identities_discarded(self, notifier):
        coordinator = _coordinator(notifier)
        result = coordinator.handle_update(self._job(0, name="a"), self._job(1, name="b"))
        assert result is HandleResult.MALFORMED
        assert notifier.calls == []


def test_custom_store_is_used(notifier):
    store = InMemoryDedupStore()
    store.mark_added(IDENTITY)
    coordinator = _coordinator(notifier, store=store)

    assert coordinator.handle(_snap(0), _snap(1)) is HandleResult.DUPLICATE
    assert notifier.calls == []


def test_admits_policy_table():
    assert admits(NotificationLevel.ALL, Outcome.SUCCEEDED)
    assert admits(NotificationLevel.ALL, Outcome.FAILED)
    assert not admits(NotificationLevel.FAILED, Outcome.SUCCEEDED)
    assert admits(NotificationLevel.FAILED, Outcome.FAILED)
