"""Error taxonomy shared by the reconciler, the API clients and the workers."""

from __future__ import annotations

import json

from kubernetes.client.exceptions import ApiException


class ControllerError(Exception):
    """Base class for every error raised by the controller."""


# ---------------------------------------------------------------------------
# Permanent errors (dropped without retry)
# ---------------------------------------------------------------------------


class PermanentError(ControllerError):
    """An error that will not go away on retry."""


class InvalidKeyError(PermanentError):
    """Raised when a work-queue key cannot be split into namespace and name."""


class InvalidResourceError(PermanentError):
    """Raised when a Foo object is malformed (e.g. negative replicas)."""


# ---------------------------------------------------------------------------
# API errors
# ---------------------------------------------------------------------------


class KubeAPIError(ControllerError):
    """Raised when the Kubernetes API returns an unexpected response.

    Anything that is not one of the subclasses below is treated as transient.
    """

    def __init__(self, message: str, status: int | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class NotFoundError(KubeAPIError):
    """The object does not exist (HTTP 404)."""


class ConflictError(KubeAPIError):
    """The submitted resourceVersion was stale (HTTP 409 ``Conflict``)."""


class AlreadyExistsError(KubeAPIError):
    """Create was rejected because the object exists (HTTP 409 ``AlreadyExists``)."""


def translate_api_exception(exc: ApiException, action: str) -> KubeAPIError:
    """Map a raw :class:`ApiException` onto the controller's error hierarchy."""
    status = exc.status
    reason = _status_reason(exc) or exc.reason or ""
    message = f"{action} failed: {status} {reason}".strip()

    if status == 404:
        return NotFoundError(message, status=status, reason=reason)
    if status == 409:
        # Both conditions are 409; the Status body reason tells them apart.
        if reason == "AlreadyExists":
            return AlreadyExistsError(message, status=status, reason=reason)
        return ConflictError(message, status=status, reason=reason)
    return KubeAPIError(message, status=status, reason=reason)


def _status_reason(exc: ApiException) -> str:
    """Return the ``reason`` field of a ``Status`` response body, if any."""
    try:
        body = json.loads(exc.body or "{}")
    except (TypeError, ValueError):
        return ""
    if not isinstance(body, dict):
        return ""
    return str(body.get("reason") or "")
