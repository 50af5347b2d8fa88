"""Foo reconciler: drives one Foo's Deployment and finalizer towards the declared state.

Each call recomputes everything from the current cached object; nothing is
carried over from the notification that queued the key.

States for one key::

    absent            -> nothing to do
    being deleted     -> delete Deployment, then drop the finalizer
    no finalizer      -> add the finalizer and stop (next pass does the work)
    steady            -> create / update / leave the Deployment alone
"""

from __future__ import annotations

import copy
from typing import Any, Protocol

import structlog
from kubernetes import client

from foo_controller.config import ControllerSettings
from foo_controller.errors import NotFoundError
from foo_controller.metrics import METRICS
from foo_controller.models import APP_LABEL, DesiredDeployment, FooResource, FooSpec, child_name, split_key

logger = structlog.get_logger(__name__)


class FooCache(Protocol):
    def get_by_key(self, key: str) -> tuple[Any, bool]: ...


# ---------------------------------------------------------------------------
# Desired state
# ---------------------------------------------------------------------------


def build_desired_deployment(
    foo: FooResource, settings: ControllerSettings, spec: FooSpec | None = None
) -> DesiredDeployment:
    """Construct the Deployment that should exist for ``foo``.

    ``spec`` is the already validated spec; it is parsed from ``foo`` when omitted.
    """
    if spec is None:
        spec = foo.parse_spec()
    return DesiredDeployment(
        namespace=foo.namespace,
        name=child_name(foo.name, settings.child_suffix),
        replicas=spec.replicas or 0,
        image=spec.image or settings.default_image,
        container_name=settings.container_name,
        labels={APP_LABEL: foo.name},
    )


def _first_container_image(deployment: client.V1Deployment) -> str | None:
    spec = deployment.spec
    template_spec = spec.template.spec if spec and spec.template else None
    containers = template_spec.containers if template_spec else None
    if not containers:
        return None
    return containers[0].image


def deployment_matches(existing: client.V1Deployment, desired: DesiredDeployment) -> bool:
    """Compare only the fields this controller owns: replica count and image.

    Everything else on the Deployment may be managed by the cluster or by
    other controllers and must not trigger an update.
    """
    replicas = existing.spec.replicas if existing.spec else None
    return replicas == desired.replicas and _first_container_image(existing) == desired.image


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class FooReconciler:
    """Reconciles one Foo key per call.

    Safe to call concurrently for *different* keys; the work queue ensures a
    single key is never reconciled twice at once.

    Parameters
    ----------
    cache:
        Read-only view of Foo objects (``get_by_key``).
    deployments:
        :class:`~foo_controller.kube.DeploymentClient`.
    foos:
        :class:`~foo_controller.kube.FooClient` used for finalizer updates.
    settings:
        Controller configuration.
    """

    def __init__(self, cache: FooCache, deployments, foos, settings: ControllerSettings) -> None:
        self._cache = cache
        self._deployments = deployments
        self._foos = foos
        self._settings = settings

    def reconcile(self, key: str) -> None:
        """Run one pass for ``key``.

        Returns normally when the key has converged (or needs no work) and
        raises otherwise; the caller decides whether to retry.
        """
        namespace, name = split_key(key)

        obj, exists = self._cache.get_by_key(key)
        if not exists:
            logger.info("foo_gone", namespace=namespace, name=name)
            return

        foo = FooResource.from_object(obj)

        if foo.is_being_deleted:
            logger.info("foo_marked_for_deletion", namespace=namespace, name=name)
            self._handle_deletion(foo)
            return

        finalizer = self._settings.finalizer_name
        if not foo.has_finalizer(finalizer):
            self._add_finalizer(foo)
            return

        # Only the steady path depends on the spec being well formed.
        spec = foo.parse_spec()
        if spec.replicas is None:
            logger.warning("foo_missing_replicas", namespace=namespace, name=name)
            return

        logger.info("reconciling_foo", namespace=namespace, name=name, replicas=spec.replicas)
        self._reconcile_deployment(build_desired_deployment(foo, self._settings, spec))

    # -- steady state -----------------------------------------------------------

    def _reconcile_deployment(self, desired: DesiredDeployment) -> None:
        try:
            existing = self._deployments.get(desired.namespace, desired.name)
        except NotFoundError:
            logger.info("creating_deployment", namespace=desired.namespace, name=desired.name)
            self._deployments.create(desired.namespace, desired.to_body())
            METRICS.child_actions_total.labels(action="create").inc()
            return

        if deployment_matches(existing, desired):
            logger.info("deployment_up_to_date", namespace=desired.namespace, name=desired.name)
            return

        logger.info(
            "updating_deployment",
            namespace=desired.namespace,
            name=desired.name,
            replicas=desired.replicas,
            image=desired.image,
        )
        # Keep the live metadata (resourceVersion, labels, annotations) and
        # replace the spec wholesale.
        body = copy.deepcopy(existing)
        body.spec = desired.to_spec()
        self._deployments.replace(desired.namespace, desired.name, body)
        METRICS.child_actions_total.labels(action="update").inc()

    # -- finalizer handling -----------------------------------------------------

    def _add_finalizer(self, foo: FooResource) -> None:
        logger.info("adding_finalizer", key=foo.key, resource_version=foo.resource_version)
        try:
            self._foos.update(foo.with_finalizer(self._settings.finalizer_name))
        except NotFoundError:
            logger.info("foo_gone_before_finalizer", key=foo.key)
            return
        METRICS.child_actions_total.labels(action="add_finalizer").inc()

    def _handle_deletion(self, foo: FooResource) -> None:
        deployment_name = child_name(foo.name, self._settings.child_suffix)

        logger.info("deleting_deployment", namespace=foo.namespace, name=deployment_name)
        try:
            self._deployments.delete(foo.namespace, deployment_name)
            METRICS.child_actions_total.labels(action="delete").inc()
        except NotFoundError:
            logger.info("deployment_already_gone", namespace=foo.namespace, name=deployment_name)

        finalizer = self._settings.finalizer_name
        if not foo.has_finalizer(finalizer):
            return

        logger.info("removing_finalizer", key=foo.key, resource_version=foo.resource_version)
        try:
            self._foos.update(foo.without_finalizer(finalizer))
        except NotFoundError:
            logger.info("foo_already_removed", key=foo.key)
            return
        METRICS.child_actions_total.labels(action="remove_finalizer").inc()
