"""Data models for the Foo controller."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from kubernetes import client
from pydantic import BaseModel, Field, ValidationError

from foo_controller.errors import InvalidKeyError, InvalidResourceError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FOO_GROUP = "example.com"
FOO_VERSION = "v1"
FOO_PLURAL = "foos"

FINALIZER_NAME = "finalizer.foo.example.com"
"""Marker the controller keeps on every Foo until its Deployment is gone."""

CHILD_SUFFIX = "-deployment"
APP_LABEL = "app"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def join_key(namespace: str, name: str) -> str:
    """Build a ``namespace/name`` key (just ``name`` for cluster-scoped objects)."""
    if namespace:
        return f"{namespace}/{name}"
    return name


def split_key(key: str) -> tuple[str, str]:
    """Split a ``namespace/name`` key.

    Raises
    ------
    InvalidKeyError
        If the key has more than one separator or an empty name.
    """
    if not isinstance(key, str):
        raise InvalidKeyError(f"unexpected key type: {key!r}")
    parts = key.split("/")
    if len(parts) == 1:
        namespace, name = "", parts[0]
    elif len(parts) == 2:
        namespace, name = parts
    else:
        raise InvalidKeyError(f"unexpected key format: {key!r}")
    if not name:
        raise InvalidKeyError(f"unexpected key format: {key!r}")
    return namespace, name


def child_name(foo_name: str, suffix: str = CHILD_SUFFIX) -> str:
    """Name of the Deployment managed on behalf of the Foo called ``foo_name``."""
    return f"{foo_name}{suffix}"


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Tombstone delivered on delete when the final object state was missed.

    The cache only knows the key (and possibly a stale copy of the object).
    """

    key: str
    obj: Any = None


# ---------------------------------------------------------------------------
# Foo (primary resource)
# ---------------------------------------------------------------------------


class FooSpec(BaseModel):
    replicas: int | None = Field(default=None, ge=0, strict=True)
    image: str | None = Field(default=None, min_length=1)


class FooResource(BaseModel):
    """Parsed view of a cached ``Foo`` object.

    Only the metadata is checked on construction; :meth:`parse_spec` checks
    the spec. A Foo with a broken spec can therefore still be torn down.

    ``raw`` keeps the full object so updates can be submitted with every field
    (and the ``resourceVersion``) the API server returned.
    """

    namespace: str
    name: str = Field(..., min_length=1)
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: str | None = None
    resource_version: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> FooResource:
        """Parse the metadata of a raw ``Foo`` dict as returned by the custom objects API."""
        if not isinstance(obj, dict):
            raise InvalidResourceError(f"expected a dict, got {type(obj).__name__}")
        metadata = obj.get("metadata") or {}
        try:
            return cls(
                namespace=metadata.get("namespace") or "",
                name=metadata.get("name") or "",
                finalizers=list(metadata.get("finalizers") or []),
                deletion_timestamp=_as_str(metadata.get("deletionTimestamp")),
                resource_version=metadata.get("resourceVersion"),
                raw=obj,
            )
        except ValidationError as exc:
            raise InvalidResourceError(f"invalid Foo metadata: {exc}") from exc

    def parse_spec(self) -> FooSpec:
        """Validate ``spec``; raises :class:`InvalidResourceError` when malformed."""
        try:
            return FooSpec.model_validate(self.raw.get("spec") or {})
        except ValidationError as exc:
            raise InvalidResourceError(f"invalid spec on Foo {self.key}: {exc}") from exc

    @property
    def key(self) -> str:
        return join_key(self.namespace, self.name)

    @property
    def is_being_deleted(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def with_finalizer(self, finalizer: str) -> dict[str, Any]:
        """Return a deep copy of the object with ``finalizer`` appended."""
        body = copy.deepcopy(self.raw)
        metadata = body.setdefault("metadata", {})
        finalizers = list(metadata.get("finalizers") or [])
        if finalizer not in finalizers:
            finalizers.append(finalizer)
        metadata["finalizers"] = finalizers
        return body

    def without_finalizer(self, finalizer: str) -> dict[str, Any]:
        """Return a deep copy of the object with ``finalizer`` removed."""
        body = copy.deepcopy(self.raw)
        metadata = body.setdefault("metadata", {})
        metadata["finalizers"] = [f for f in metadata.get("finalizers") or [] if f != finalizer]
        return body


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


# ---------------------------------------------------------------------------
# Deployment (child resource)
# ---------------------------------------------------------------------------


class DesiredDeployment(BaseModel):
    """The Deployment the controller wants to exist for one Foo."""

    namespace: str
    name: str
    replicas: int = Field(..., ge=0)
    image: str
    container_name: str = "nginx"
    labels: dict[str, str] = Field(default_factory=dict)

    def to_spec(self) -> client.V1DeploymentSpec:
        return client.V1DeploymentSpec(
            replicas=self.replicas,
            selector=client.V1LabelSelector(match_labels=dict(self.labels)),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=dict(self.labels)),
                spec=client.V1PodSpec(
                    containers=[client.V1Container(name=self.container_name, image=self.image)],
                ),
            ),
        )

    def to_body(self) -> client.V1Deployment:
        """Build the full object submitted on create."""
        return client.V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=client.V1ObjectMeta(name=self.name, namespace=self.namespace),
            spec=self.to_spec(),
        )
