"""Turns cache notifications into work-queue keys.

Every add / update / delete notification is reduced to the ``namespace/name``
key of the affected Foo. The translator never talks to the API server and
never lets an exception escape into the thread delivering the notification.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from foo_controller.errors import InvalidKeyError
from foo_controller.metrics import METRICS
from foo_controller.models import DeletedFinalStateUnknown, join_key

logger = structlog.get_logger(__name__)


class KeyQueue(Protocol):
    def add(self, item: str) -> None: ...


def meta_namespace_key(obj: Any) -> str:
    """Return the ``namespace/name`` key of a dict or kubernetes model object."""
    if isinstance(obj, dict):
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace") or ""
        name = metadata.get("name") or ""
    else:
        metadata = getattr(obj, "metadata", None)
        namespace = getattr(metadata, "namespace", None) or ""
        name = getattr(metadata, "name", None) or ""
    if not name:
        raise InvalidKeyError(f"object has no metadata.name: {obj!r}")
    return join_key(namespace, name)


def deletion_handling_key(obj: Any) -> str:
    """Like :func:`meta_namespace_key` but also accepts tombstones."""
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key
    return meta_namespace_key(obj)


class EventTranslator:
    """Enqueues the key of every Foo the cache reports as added, updated or removed.

    Parameters
    ----------
    queue:
        Destination for keys (normally a :class:`~foo_controller.workqueue.RateLimitingQueue`).
    """

    def __init__(self, queue: KeyQueue) -> None:
        self._queue = queue

    def on_add(self, obj: Any) -> None:
        self._enqueue("added", obj, meta_namespace_key)

    def on_update(self, old: Any, new: Any) -> None:
        self._enqueue("updated", new, meta_namespace_key)

    def on_delete(self, obj: Any) -> None:
        self._enqueue("deleted", obj, deletion_handling_key)

    def _enqueue(self, event: str, obj: Any, key_func) -> None:
        try:
            key = key_func(obj)
            self._queue.add(key)
        except Exception:
            METRICS.event_errors_total.inc()
            logger.exception("event_enqueue_failed", event=event)
            return
        METRICS.events_total.labels(event=event).inc()
        logger.info("foo_event", event=event, key=key)
