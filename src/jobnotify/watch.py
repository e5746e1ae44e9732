"""
List-and-watch of Kubernetes Job resources.

This module provides:
- Cluster credential loading (in-cluster or kubeconfig)
- A watcher that keeps a local cache of Job objects, feeds
  (previous, current) pairs to a callback, and periodically redelivers
  the cached state as (obj, obj) pairs (resync)

Jobs seen for the first time are only cached, so jobs that were already
finished when the process started do not produce pairs.
"""

from __future__ import annotations

import functools
import logging
import threading
from typing import Any, Callable, Dict, Optional

from kubernetes import client, config as kube_config, watch
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from jobnotify.classifier import JobIdentity, MalformedSnapshotError, identity_of

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Any, Any], Any]

HTTP_GONE = 410
DEFAULT_RESYNC_PERIOD = 30.0
ERROR_BACKOFF_SECONDS = 5.0
# Client-side socket timeout on top of the server-side watch timeout
REQUEST_TIMEOUT_MARGIN = 10.0


class WatchError(RuntimeError):
    """Raised when the watch cannot be established."""


def load_batch_api(in_cluster: bool = True, kubeconfig: Optional[str] = None) -> client.BatchV1Api:
    """
    Load cluster credentials and return a Batch/v1 API client.

    Args:
        in_cluster: Use the pod service account instead of a kubeconfig.
        kubeconfig: Kubeconfig path; defaults to $KUBECONFIG or ~/.kube/config.

    Raises:
        WatchError: If credentials cannot be loaded.
    """
    try:
        if in_cluster:
            kube_config.load_incluster_config()
        else:
            kube_config.load_kube_config(config_file=kubeconfig)
    except (ConfigException, OSError) as exc:
        source = "in-cluster service account" if in_cluster else (kubeconfig or "default kubeconfig")
        raise WatchError(f"Failed to load Kubernetes credentials from {source}: {exc}") from exc

    return client.BatchV1Api()


def _resource_version(obj: Any) -> Optional[str]:
    metadata = obj.get("metadata") if isinstance(obj, dict) else getattr(obj, "metadata", None)
    if metadata is None:
        return None
    if isinstance(metadata, dict):
        return metadata.get("resourceVersion")
    return getattr(metadata, "resource_version", None)


class JobWatcher:
    """
    Watches Job resources and reports (previous, current) pairs.

    Pairs for one job are always reported in order from a single thread.

    Attributes:
        namespace: Namespace filter ("" for all namespaces).
        resync_period: Seconds between full cache redeliveries.
        synced: Set once the initial listing completed.

    Example:
        >>> watcher = JobWatcher(load_batch_api(), coordinator.handle_update)
        >>> watcher.start()
        >>> watcher.synced.wait()
    """

    def __init__(
        self,
        batch_api: Any,
        on_update: UpdateCallback,
        namespace: str = "",
        resync_period: float = DEFAULT_RESYNC_PERIOD,
        watch_factory: Callable[[], Any] = watch.Watch,
        error_backoff: float = ERROR_BACKOFF_SECONDS,
    ):
        self.batch_api = batch_api
        self.on_update = on_update
        self.namespace = namespace or ""
        self.resync_period = float(resync_period)
        self.watch_factory = watch_factory
        self.error_backoff = error_backoff

        self.synced = threading.Event()
        self._stop_event = threading.Event()
        self._cache: Dict[JobIdentity, Any] = {}
        self._resource_version: Optional[str] = None
        self._watch: Any = None
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[WatchError] = None

    @property
    def namespace_label(self) -> str:
        return self.namespace or "all"

    @property
    def cached_count(self) -> int:
        return len(self._cache)

    def _list_function(self) -> Callable[..., Any]:
        if self.namespace:
            return functools.partial(self.batch_api.list_namespaced_job, self.namespace)
        return self.batch_api.list_job_for_all_namespaces

    # -------------------------------------------------------------------------
    # Callback delivery
    # -------------------------------------------------------------------------

    def _emit(self, previous: Any, current: Any) -> None:
        try:
            self.on_update(previous, current)
        except Exception:
            logger.exception("Job update handler raised; continuing watch")

    def _store(self, obj: Any) -> Optional[JobIdentity]:
        """Cache an object and report the pair if it replaces a cached one."""
        try:
            identity = identity_of(obj)
        except MalformedSnapshotError as exc:
            logger.debug(f"Ignoring malformed job object: {exc}")
            return None

        previous = self._cache.get(identity)
        self._cache[identity] = obj
        if previous is not None:
            self._emit(previous, obj)
        return identity

    # -------------------------------------------------------------------------
    # List / watch / resync
    # -------------------------------------------------------------------------

    def sync(self) -> None:
        """
        List all jobs and reconcile the local cache.

        Raises:
            ApiException: If the list call fails.
        """
        result = self._list_function()()
        seen = set()
        for job in result.items or []:
            identity = self._store(job)
            if identity is not None:
                seen.add(identity)

        for identity in set(self._cache) - seen:
            del self._cache[identity]

        self._resource_version = _resource_version(result)
        if not self.synced.is_set():
            logger.info(
                f"Initial job listing synced (namespace={self.namespace_label}, "
                f"jobs={len(self._cache)})"
            )
        self.synced.set()

    def resync(self) -> None:
        """Redeliver every cached job as an unchanged (obj, obj) pair."""
        for obj in list(self._cache.values()):
            if self._stop_event.is_set():
                return
            self._emit(obj, obj)

    def process_event(self, event: Dict[str, Any]) -> bool:
        """
        Apply one watch event to the cache.

        Returns:
            False if the watch must be restarted from a fresh listing.
        """
        event_type = event.get("type")
        obj = event.get("object")

        if event_type == "ERROR":
            raw = event.get("raw_object") or {}
            code = raw.get("code") if isinstance(raw, dict) else None
            logger.info(f"Watch returned an error event (code={code}); relisting")
            return False

        version = _resource_version(obj)
        if version:
            self._resource_version = version

        if event_type in ("ADDED", "MODIFIED"):
            self._store(obj)
        elif event_type == "DELETED":
            try:
                self._cache.pop(identity_of(obj), None)
            except MalformedSnapshotError:
                pass
        return True

    def _watch_once(self) -> bool:
        """Stream events until the server-side timeout; False means relist."""
        self._watch = self.watch_factory()
        timeout = max(int(self.resync_period), 1)
        kwargs: Dict[str, Any] = {
            "timeout_seconds": timeout,
            "_request_timeout": timeout + REQUEST_TIMEOUT_MARGIN,
        }
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        try:
            for event in self._watch.stream(self._list_function(), **kwargs):
                if self._stop_event.is_set():
                    break
                if not self.process_event(event):
                    return False
        finally:
            self._watch.stop()
            self._watch = None
        return True

    def run(self) -> None:
        """
        Sync, then watch until ``stop`` is called.

        Raises:
            WatchError: If the initial listing fails.
        """
        logger.info(
            f"Starting job watch (namespace={self.namespace_label}, "
            f"resync_period={self.resync_period}s)"
        )
        try:
            self.sync()
        except ApiException as exc:
            raise WatchError(f"Initial job listing failed: {exc.status} {exc.reason}") from exc

        needs_relist = False
        while not self._stop_event.is_set():
            try:
                if needs_relist:
                    self.sync()
                    needs_relist = False
                if not self._watch_once():
                    needs_relist = True
                    continue
            except ApiException as exc:
                if exc.status == HTTP_GONE:
                    logger.info("Watch resource version expired; relisting")
                    needs_relist = True
                    continue
                logger.warning(f"Job watch failed ({exc.status} {exc.reason}); retrying")
                self._stop_event.wait(self.error_backoff)
                continue
            except Exception as exc:
                logger.warning(f"Job watch interrupted: {exc!r}; retrying")
                needs_relist = True
                self._stop_event.wait(self.error_backoff)
                continue

            if not self._stop_event.is_set():
                self.resync()

        logger.info("Job watch stopped")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> threading.Thread:
        """Run the watcher on a daemon thread."""
        self._thread = threading.Thread(target=self._run_in_thread, name="jobnotify-watch", daemon=True)
        self._thread.start()
        return self._thread

    def _run_in_thread(self) -> None:
        try:
            self.run()
        except WatchError as exc:
            self.error = exc
            logger.error(str(exc))
            self._stop_event.set()
            # Unblock anyone waiting for the initial sync
            self.synced.set()

    def stop(self) -> None:
        """Request a prompt stop of the watch loop."""
        self._stop_event.set()
        current = self._watch
        if current is not None:
            current.stop()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stopped; returns True if stopped within timeout."""
        return self._stop_event.wait(timeout)
