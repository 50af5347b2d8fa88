"""Thin wrappers over the Kubernetes API used by the reconciler.

Both clients translate :class:`ApiException` into the controller's error
hierarchy so callers can tell "not found" and "conflict" apart from
transient failures.
"""

from __future__ import annotations

from typing import Any

import structlog
from kubernetes import client, config
from kubernetes.client import AppsV1Api, CustomObjectsApi
from kubernetes.client.exceptions import ApiException

from foo_controller.errors import translate_api_exception

logger = structlog.get_logger(__name__)


def load_k8s_config(kubeconfig: str = "", master_url: str = "") -> None:
    """Load Kubernetes configuration (in-cluster preferred, fallback to kubeconfig).

    ``master_url`` overrides the API server address from either source.
    """
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        logger.info("k8s_config_loaded", source="kubeconfig", path=kubeconfig)
    else:
        try:
            config.load_incluster_config()
            logger.info("k8s_config_loaded", source="in-cluster")
        except config.ConfigException:
            config.load_kube_config()
            logger.info("k8s_config_loaded", source="kubeconfig")

    if master_url:
        configuration = client.Configuration.get_default_copy()
        configuration.host = master_url
        client.Configuration.set_default(configuration)
        logger.info("k8s_master_overridden", host=master_url)


class DeploymentClient:
    """get / create / replace / delete for the managed Deployments."""

    def __init__(self, apps_api: AppsV1Api, request_timeout: float = 30.0) -> None:
        self._api = apps_api
        self._timeout = request_timeout

    def get(self, namespace: str, name: str) -> client.V1Deployment:
        try:
            return self._api.read_namespaced_deployment(
                name=name, namespace=namespace, _request_timeout=self._timeout
            )
        except ApiException as exc:
            raise translate_api_exception(exc, f"get deployment {namespace}/{name}") from exc

    def create(self, namespace: str, body: client.V1Deployment) -> client.V1Deployment:
        try:
            return self._api.create_namespaced_deployment(
                namespace=namespace, body=body, _request_timeout=self._timeout
            )
        except ApiException as exc:
            raise translate_api_exception(exc, f"create deployment in {namespace}") from exc

    def replace(self, namespace: str, name: str, body: client.V1Deployment) -> client.V1Deployment:
        try:
            return self._api.replace_namespaced_deployment(
                name=name, namespace=namespace, body=body, _request_timeout=self._timeout
            )
        except ApiException as exc:
            raise translate_api_exception(exc, f"update deployment {namespace}/{name}") from exc

    def delete(self, namespace: str, name: str) -> None:
        try:
            self._api.delete_namespaced_deployment(
                name=name, namespace=namespace, _request_timeout=self._timeout
            )
        except ApiException as exc:
            raise translate_api_exception(exc, f"delete deployment {namespace}/{name}") from exc


class FooClient:
    """Writes Foo objects back to the API server (finalizer changes only)."""

    def __init__(
        self,
        custom_api: CustomObjectsApi,
        group: str,
        version: str,
        plural: str,
        request_timeout: float = 30.0,
    ) -> None:
        self._api = custom_api
        self._group = group
        self._version = version
        self._plural = plural
        self._timeout = request_timeout

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the whole object; fails with ``ConflictError`` if ``obj`` is stale."""
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace") or ""
        name = metadata.get("name") or ""
        try:
            return self._api.replace_namespaced_custom_object(
                group=self._group,
                version=self._version,
                namespace=namespace,
                plural=self._plural,
                name=name,
                body=obj,
                _request_timeout=self._timeout,
            )
        except ApiException as exc:
            raise translate_api_exception(exc, f"update {self._plural} {namespace}/{name}") from exc
