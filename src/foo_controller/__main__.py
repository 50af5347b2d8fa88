"""Entry point for ``python -m foo_controller`` and the ``foo-controller`` script.

The first SIGINT / SIGTERM sets the stop event that :meth:`FooController.run`
waits on, so workers drain before the process exits. A second signal exits
immediately with status 1.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from collections.abc import Callable

import structlog
from prometheus_client import start_http_server
from pydantic import ValidationError

from foo_controller.config import load_settings
from foo_controller.controller import build_controller
from foo_controller.kube import load_k8s_config

logger = structlog.get_logger(__name__)

# Processors applied to structlog events and to records from plain ``logging``
# users (the kubernetes client, urllib3) alike.
_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def configure_logging(log_level: str, log_format: str) -> None:
    """Route structlog and stdlib logging through one stdout handler."""
    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def shutdown_handler(stop_event: threading.Event) -> Callable[[int, object], None]:
    """Build a signal handler that stops gracefully once, then hard-exits."""

    def _handle(signum: int, _frame: object) -> None:
        name = signal.Signals(signum).name
        if stop_event.is_set():
            logger.warning("forced_exit", signal=name)
            os._exit(1)
        logger.info("shutdown_requested", signal=name)
        stop_event.set()

    return _handle


def main() -> None:
    try:
        settings = load_settings()
    except ValidationError as exc:
        # Logging is configured from these settings, so it is not ready yet.
        print(f"invalid configuration: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(settings.log_level, settings.log_format)
    logger.info(
        "foo_controller_starting",
        namespace=settings.namespace or "all",
        workers=settings.workers,
        resync_period=settings.resync_period,
    )

    load_k8s_config(settings.kubeconfig, settings.master_url)

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info("metrics_server_started", port=settings.metrics_port)

    stop_event = threading.Event()
    handler = shutdown_handler(stop_event)
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)

    synced = build_controller(settings).run(stop_event)
    logger.info("foo_controller_exited", synced=synced)
    if not synced:
        sys.exit(1)


if __name__ == "__main__":
    main()
