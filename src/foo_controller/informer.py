"""List + watch cache of Foo objects.

Keeps a local mirror of every Foo (cluster wide or in one namespace), tells
registered handlers about adds, updates and removals, and periodically
redelivers every cached object so missed notifications are eventually
repaired.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
from kubernetes import watch
from kubernetes.client import CustomObjectsApi
from kubernetes.client.exceptions import ApiException

from foo_controller.config import ControllerSettings
from foo_controller.errors import InvalidKeyError
from foo_controller.event_handler import meta_namespace_key
from foo_controller.metrics import METRICS
from foo_controller.models import DeletedFinalStateUnknown

logger = structlog.get_logger(__name__)

# Seconds to wait before relisting after a broken watch stream
_RELIST_BACKOFF = 1.0
_MAX_RELIST_BACKOFF = 30.0


class ResourceExpiredError(Exception):
    """The watch resourceVersion is too old (HTTP 410); a relist is required."""


@dataclass(frozen=True)
class EventHandler:
    on_add: Callable[[Any], None]
    on_update: Callable[[Any, Any], None]
    on_delete: Callable[[Any], None]


class FooInformer:
    """Watches Foo custom objects and mirrors them in memory.

    Parameters
    ----------
    custom_api:
        ``CustomObjectsApi`` used for list and watch.
    settings:
        Supplies group / version / plural, the namespace and the timings.
    """

    def __init__(self, custom_api: CustomObjectsApi, settings: ControllerSettings) -> None:
        self._api = custom_api
        self._settings = settings
        self._lock = threading.Lock()
        self._store: dict[str, dict[str, Any]] = {}
        self._handlers: list[EventHandler] = []
        self._synced = threading.Event()
        self._last_resync = time.monotonic()

    # -- public interface -------------------------------------------------------

    def add_event_handler(
        self,
        on_add: Callable[[Any], None],
        on_update: Callable[[Any, Any], None],
        on_delete: Callable[[Any], None],
    ) -> None:
        self._handlers.append(EventHandler(on_add, on_update, on_delete))

    def get_by_key(self, key: str) -> tuple[dict[str, Any] | None, bool]:
        with self._lock:
            obj = self._store.get(key)
        return obj, obj is not None

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_cache_sync(self, stop_event: threading.Event, timeout: float | None = None) -> bool:
        """Block until the initial list completed, ``stop_event`` fired or ``timeout`` passed."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._synced.is_set():
            if stop_event.is_set():
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
            self._synced.wait(0.1)
        return True

    def run(self, stop_event: threading.Event) -> None:
        """List, then watch, until ``stop_event`` is set. Reconnects on errors."""
        backoff = _RELIST_BACKOFF
        resource_version: str | None = None
        while not stop_event.is_set():
            try:
                if resource_version is None:
                    resource_version = self._relist()
                    backoff = _RELIST_BACKOFF
                resource_version = self._watch(resource_version, stop_event)
            except ResourceExpiredError:
                logger.info("watch_expired_relisting", plural=self._settings.plural)
                resource_version = None
            except Exception:
                if stop_event.is_set():
                    break
                logger.exception("watch_error", plural=self._settings.plural, retry_in=backoff)
                resource_version = None
                stop_event.wait(backoff)
                backoff = min(backoff * 2, _MAX_RELIST_BACKOFF)
        logger.info("informer_stopped", plural=self._settings.plural)

    # -- list / watch -----------------------------------------------------------

    def _list_call(self) -> Callable[..., Any]:
        if self._settings.namespace:
            return self._api.list_namespaced_custom_object
        return self._api.list_cluster_custom_object

    def _list_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "group": self._settings.group,
            "version": self._settings.version,
            "plural": self._settings.plural,
        }
        if self._settings.namespace:
            kwargs["namespace"] = self._settings.namespace
        return kwargs

    def _relist(self) -> str | None:
        """Replace the store with a fresh list and notify handlers of the differences."""
        result = self._list_call()(**self._list_kwargs(), _request_timeout=self._settings.request_timeout)
        items = result.get("items") or []
        fresh: dict[str, dict[str, Any]] = {}
        for item in items:
            try:
                fresh[meta_namespace_key(item)] = item
            except Exception:
                logger.exception("list_item_skipped")

        with self._lock:
            previous = self._store
            self._store = fresh

        for key, obj in fresh.items():
            old = previous.get(key)
            if old is None:
                self._dispatch("add", obj)
            else:
                self._dispatch("update", old, obj)
        for key, old in previous.items():
            if key not in fresh:
                # Deleted while we were not watching; only the last copy is known.
                self._dispatch("delete", DeletedFinalStateUnknown(key=key, obj=old))

        if self._synced.is_set():
            METRICS.cache_relists_total.inc()
        self._synced.set()
        self._last_resync = time.monotonic()
        resource_version = (result.get("metadata") or {}).get("resourceVersion")
        logger.info("foos_listed", count=len(fresh), resource_version=resource_version)
        return resource_version

    def _watch(self, resource_version: str | None, stop_event: threading.Event) -> str | None:
        """Consume one watch stream; returns the last seen resourceVersion."""
        w = watch.Watch()
        kwargs = self._list_kwargs()
        kwargs["timeout_seconds"] = self._stream_timeout()
        if resource_version:
            kwargs["resource_version"] = resource_version
        try:
            for event in w.stream(self._list_call(), **kwargs):
                if stop_event.is_set():
                    break
                resource_version = self._handle_event(event) or resource_version
                self._maybe_resync()
        except ApiException as exc:
            if exc.status == 410:
                raise ResourceExpiredError(str(exc)) from exc
            raise
        finally:
            w.stop()
        self._maybe_resync()
        return resource_version

    def _stream_timeout(self) -> int:
        timeout = self._settings.watch_timeout
        if self._settings.resync_period > 0:
            # Short enough that resync is not starved by a quiet stream.
            timeout = min(timeout, max(int(self._settings.resync_period), 1))
        return timeout

    def _handle_event(self, event: dict[str, Any]) -> str | None:
        """Apply one watch event to the store. Returns the object's resourceVersion."""
        event_type = event.get("type", "")
        obj = event.get("object")

        if event_type == "ERROR":
            status = obj if isinstance(obj, dict) else {}
            if status.get("code") == 410:
                raise ResourceExpiredError(status.get("message", "resource version expired"))
            logger.warning("watch_error_event", status=status)
            return None

        if not isinstance(obj, dict):
            return None
        try:
            key = meta_namespace_key(obj)
        except InvalidKeyError:
            logger.warning("watch_event_without_name", event_type=event_type)
            return None
        resource_version = (obj.get("metadata") or {}).get("resourceVersion")

        if event_type in ("ADDED", "MODIFIED"):
            with self._lock:
                old = self._store.get(key)
                self._store[key] = obj
            if old is None:
                self._dispatch("add", obj)
            else:
                self._dispatch("update", old, obj)
        elif event_type == "DELETED":
            with self._lock:
                self._store.pop(key, None)
            self._dispatch("delete", obj)
        # BOOKMARK only advances the resourceVersion
        return resource_version

    def _maybe_resync(self) -> None:
        period = self._settings.resync_period
        if period <= 0 or time.monotonic() - self._last_resync < period:
            return
        self._last_resync = time.monotonic()
        with self._lock:
            objs = list(self._store.values())
        logger.debug("cache_resync", count=len(objs))
        for obj in objs:
            self._dispatch("update", obj, obj)

    def _dispatch(self, kind: str, *args: Any) -> None:
        for handler in self._handlers:
            try:
                if kind == "add":
                    handler.on_add(*args)
                elif kind == "update":
                    handler.on_update(*args)
                else:
                    handler.on_delete(*args)
            except Exception:
                logger.exception("event_handler_error", kind=kind)
