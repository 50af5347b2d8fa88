"""Main controller loop: ties the Foo cache, the work queue and the reconciler together."""

from __future__ import annotations

import threading
import time

import structlog
from kubernetes import client

from foo_controller.config import ControllerSettings
from foo_controller.errors import PermanentError
from foo_controller.event_handler import EventTranslator
from foo_controller.informer import FooInformer
from foo_controller.kube import DeploymentClient, FooClient
from foo_controller.metrics import METRICS
from foo_controller.reconciler import FooReconciler
from foo_controller.workqueue import ItemExponentialFailureRateLimiter, RateLimitingQueue

logger = structlog.get_logger(__name__)


class FooController:
    """Top-level orchestrator.

    1. Starts the Foo informer and waits for its initial list.
    2. Starts ``settings.workers`` worker threads draining the work queue.
    3. Blocks until the stop event fires, then shuts the queue down and lets
       in-flight reconciles finish.

    Parameters
    ----------
    settings:
        Fully-resolved controller configuration.
    informer:
        Source of Foo notifications and cached objects.
    queue:
        Work queue shared by the event translator and the workers.
    reconciler:
        Performs one reconcile per key.
    """

    def __init__(
        self,
        settings: ControllerSettings,
        informer: FooInformer,
        queue: RateLimitingQueue,
        reconciler: FooReconciler,
    ) -> None:
        self._settings = settings
        self._informer = informer
        self._queue = queue
        self._reconciler = reconciler
        self._stop_event = threading.Event()
        self._workers: list[threading.Thread] = []
        self._informer_thread: threading.Thread | None = None

        translator = EventTranslator(queue)
        informer.add_event_handler(translator.on_add, translator.on_update, translator.on_delete)

    # -- lifecycle --------------------------------------------------------------

    def run(self, stop_event: threading.Event | None = None) -> bool:
        """Run until ``stop_event`` (or :meth:`stop`) fires.

        Returns ``False`` if the cache never synced.
        """
        if stop_event is not None:
            self._stop_event = stop_event

        logger.info(
            "controller_starting",
            namespace=self._settings.namespace or "all",
            workers=self._settings.workers,
            max_retries=self._settings.max_retries,
        )

        self._informer_thread = threading.Thread(
            target=self._informer.run, args=(self._stop_event,), daemon=True, name="foo-informer"
        )
        self._informer_thread.start()

        try:
            if not self._informer.wait_for_cache_sync(self._stop_event, self._settings.cache_sync_timeout):
                logger.error("cache_sync_failed", timeout=self._settings.cache_sync_timeout)
                return False

            logger.info("controller_synced")

            for i in range(self._settings.workers):
                t = threading.Thread(target=self.run_worker, daemon=True, name=f"foo-worker-{i}")
                self._workers.append(t)
                t.start()

            self._stop_event.wait()
            return True
        finally:
            self._stop_event.set()
            self._queue.shut_down()
            self._join_threads()
            logger.info("controller_stopped")

    def stop(self) -> None:
        """Ask :meth:`run` to return."""
        logger.info("controller_stopping")
        self._stop_event.set()

    def _join_threads(self) -> None:
        """Wait for workers and the informer, sharing one ``shutdown_timeout`` budget."""
        deadline = time.monotonic() + self._settings.shutdown_timeout
        threads = list(self._workers)
        if self._informer_thread is not None:
            threads.append(self._informer_thread)
        for t in threads:
            t.join(timeout=max(deadline - time.monotonic(), 0))
            if t.is_alive():
                logger.warning("thread_still_running", thread=t.name)

    # -- workers ----------------------------------------------------------------

    def run_worker(self) -> None:
        while self.process_next_item():
            pass

    def process_next_item(self) -> bool:
        """Take one key, reconcile it and report the outcome to the queue.

        Returns ``False`` once the queue has been shut down.
        """
        key, shutdown = self._queue.get()
        if shutdown:
            return False

        try:
            logger.debug("processing_key", key=key)
            self._reconcile(key)
        finally:
            self._queue.done(key)
        return True

    def _reconcile(self, key: str) -> None:
        start = time.monotonic()
        try:
            self._reconciler.reconcile(key)
        except PermanentError as exc:
            METRICS.reconcile_total.labels(result="error").inc()
            METRICS.dropped_total.labels(reason="permanent").inc()
            self._queue.forget(key)
            logger.error("dropping_key_permanent_error", key=key, error=str(exc))
        except Exception as exc:
            METRICS.reconcile_total.labels(result="error").inc()
            self._handle_err(key, exc)
        else:
            METRICS.reconcile_total.labels(result="success").inc()
            self._queue.forget(key)
        finally:
            METRICS.reconcile_duration_seconds.observe(time.monotonic() - start)

    def _handle_err(self, key: str, exc: Exception) -> None:
        # num_requeues counts earlier failures; this failure is number +1.
        failures = self._queue.num_requeues(key) + 1
        if failures < self._settings.max_retries:
            logger.error("error_syncing_key", key=key, error=str(exc), attempt=failures)
            METRICS.retries_total.inc()
            self._queue.add_rate_limited(key)
            return

        logger.error("dropping_key", key=key, error=str(exc), attempts=failures, exc_info=exc)
        METRICS.dropped_total.labels(reason="retries_exhausted").inc()
        self._queue.forget(key)


def build_controller(settings: ControllerSettings) -> FooController:
    """Wire a controller against the API server from the loaded kube config."""
    custom_api = client.CustomObjectsApi()
    apps_api = client.AppsV1Api()

    informer = FooInformer(custom_api, settings)
    queue = RateLimitingQueue(
        ItemExponentialFailureRateLimiter(settings.backoff_base_delay, settings.backoff_max_delay),
        name=settings.plural,
    )
    reconciler = FooReconciler(
        cache=informer,
        deployments=DeploymentClient(apps_api, settings.request_timeout),
        foos=FooClient(
            custom_api,
            settings.group,
            settings.version,
            settings.plural,
            settings.request_timeout,
        ),
        settings=settings,
    )
    return FooController(settings, informer, queue, reconciler)
