"""Configuration management for the Foo controller.

Settings are loaded from (highest priority wins):
1. Environment variables  (``FOO_CONTROLLER_*``)
2. Defaults
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from foo_controller.models import CHILD_SUFFIX, FINALIZER_NAME, FOO_GROUP, FOO_PLURAL, FOO_VERSION


class ControllerSettings(BaseSettings):
    """All configurable knobs for the controller.

    Values can be set via environment variables with the ``FOO_CONTROLLER_``
    prefix, e.g. ``FOO_CONTROLLER_WORKERS``, ``FOO_CONTROLLER_NAMESPACE``.
    """

    # Cluster connection --------------------------------------------------------
    kubeconfig: str = Field(
        default="",
        description="Path to a kubeconfig. Only required if out-of-cluster.",
    )
    master_url: str = Field(
        default="",
        description="Kubernetes API server address. Overrides any value in kubeconfig.",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for every Kubernetes API request.",
    )

    # Watched resource ----------------------------------------------------------
    namespace: str = Field(
        default="",
        description="Namespace to watch. Empty string means all namespaces.",
    )
    group: str = Field(default=FOO_GROUP, description="API group of the Foo resource.")
    version: str = Field(default=FOO_VERSION, description="API version of the Foo resource.")
    plural: str = Field(default=FOO_PLURAL, description="Plural resource name of Foo.")
    finalizer_name: str = Field(
        default=FINALIZER_NAME,
        description="Finalizer the controller keeps on each Foo until cleanup completes.",
    )
    resync_period: float = Field(
        default=30.0,
        ge=0,
        description="Seconds between redeliveries of every cached Foo (0 disables resync).",
    )
    watch_timeout: int = Field(
        default=300,
        ge=1,
        description="Server-side timeout in seconds for a single watch stream.",
    )
    cache_sync_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Seconds to wait for the initial list before giving up.",
    )

    # Child Deployment ----------------------------------------------------------
    child_suffix: str = Field(
        default=CHILD_SUFFIX,
        description="Suffix appended to the Foo name to name its Deployment.",
    )
    default_image: str = Field(
        default="nginx:latest",
        description="Container image used when the Foo does not set spec.image.",
    )
    container_name: str = Field(default="nginx", description="Name of the Deployment's container.")

    # Work queue / workers ------------------------------------------------------
    workers: int = Field(default=1, ge=1, description="Number of parallel reconcile workers.")
    max_retries: int = Field(
        default=5,
        ge=1,
        description="Consecutive failed reconciles after which a key is dropped.",
    )
    backoff_base_delay: float = Field(
        default=0.005,
        gt=0,
        description="Initial requeue delay in seconds; doubles with each failure.",
    )
    backoff_max_delay: float = Field(
        default=1000.0,
        gt=0,
        description="Upper bound for the requeue delay in seconds.",
    )
    shutdown_timeout: float = Field(
        default=30.0,
        ge=0,
        description="Seconds to wait for in-flight reconciles on shutdown.",
    )

    # Observability -------------------------------------------------------------
    metrics_port: int = Field(
        default=8080,
        ge=0,
        le=65535,
        description="Port for the Prometheus metrics endpoint (0 disables it).",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR).",
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' (structured) or 'console' (human-readable).",
    )

    # ---- Validators -----------------------------------------------------------

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log_level {v!r}")
        return v

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {v!r}")
        return v

    @field_validator("backoff_max_delay")
    @classmethod
    def _max_delay_not_below_base(cls, v: float, info) -> float:
        base = info.data.get("backoff_base_delay")
        if base is not None and v < base:
            raise ValueError("backoff_max_delay must be >= backoff_base_delay")
        return v

    # ---- Pydantic-settings config ---------------------------------------------

    model_config = {
        "env_prefix": "FOO_CONTROLLER_",
        "case_sensitive": False,
    }


def load_settings() -> ControllerSettings:
    """Load and validate controller settings from the environment.

    Raises
    ------
    pydantic.ValidationError
        If a setting is invalid.
    """
    return ControllerSettings()
