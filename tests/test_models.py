"""Tests for models, key helpers and API error translation."""

import pytest
from kubernetes.client.exceptions import ApiException

from foo_controller.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidKeyError,
    InvalidResourceError,
    KubeAPIError,
    NotFoundError,
    PermanentError,
    translate_api_exception,
)
from foo_controller.models import FINALIZER_NAME, FooResource, child_name, join_key, split_key


def _make_obj(**spec) -> dict:
    return {
        "apiVersion": "example.com/v1",
        "kind": "Foo",
        "metadata": {"name": "test-foo", "namespace": "default", "resourceVersion": "5"},
        "spec": spec,
    }


class TestKeys:
    def test_split_namespaced(self) -> None:
        assert split_key("default/test-foo") == ("default", "test-foo")

    def test_split_cluster_scoped(self) -> None:
        assert split_key("test-foo") == ("", "test-foo")

    @pytest.mark.parametrize("key", ["a/b/c", "default/", ""])
    def test_split_invalid(self, key: str) -> None:
        with pytest.raises(InvalidKeyError):
            split_key(key)

    def test_invalid_key_is_permanent(self) -> None:
        assert issubclass(InvalidKeyError, PermanentError)

    def test_join(self) -> None:
        assert join_key("default", "test-foo") == "default/test-foo"
        assert join_key("", "test-foo") == "test-foo"

    def test_child_name(self) -> None:
        assert child_name("test-foo") == "test-foo-deployment"
        assert child_name("test-foo", "-web") == "test-foo-web"


class TestFooResource:
    def test_parse(self) -> None:
        foo = FooResource.from_object(_make_obj(replicas=3, image="nginx:1.27"))
        assert foo.key == "default/test-foo"
        spec = foo.parse_spec()
        assert spec.replicas == 3
        assert spec.image == "nginx:1.27"
        assert foo.resource_version == "5"
        assert foo.finalizers == []
        assert foo.is_being_deleted is False

    def test_deletion_timestamp(self) -> None:
        obj = _make_obj(replicas=1)
        obj["metadata"]["deletionTimestamp"] = "2024-01-15T08:30:00Z"
        assert FooResource.from_object(obj).is_being_deleted is True

    def test_missing_spec_fields(self) -> None:
        foo = FooResource.from_object(_make_obj())
        spec = foo.parse_spec()
        assert spec.replicas is None
        assert spec.image is None

    @pytest.mark.parametrize("replicas", [-1, "three", True, 1.5])
    def test_invalid_replicas(self, replicas) -> None:
        foo = FooResource.from_object(_make_obj(replicas=replicas))
        with pytest.raises(InvalidResourceError):
            foo.parse_spec()

    def test_empty_image_is_invalid(self) -> None:
        foo = FooResource.from_object(_make_obj(replicas=1, image=""))
        with pytest.raises(InvalidResourceError):
            foo.parse_spec()

    def test_metadata_parses_despite_invalid_spec(self) -> None:
        obj = _make_obj(replicas=-1)
        obj["metadata"]["deletionTimestamp"] = "2024-01-15T08:30:00Z"
        foo = FooResource.from_object(obj)
        assert foo.key == "default/test-foo"
        assert foo.is_being_deleted is True

    def test_missing_name_is_invalid(self) -> None:
        obj = _make_obj(replicas=1)
        del obj["metadata"]["name"]
        with pytest.raises(InvalidResourceError):
            FooResource.from_object(obj)

    def test_not_a_dict(self) -> None:
        with pytest.raises(InvalidResourceError):
            FooResource.from_object(["not", "a", "dict"])

    def test_with_finalizer_is_idempotent(self) -> None:
        obj = _make_obj(replicas=1)
        obj["metadata"]["finalizers"] = [FINALIZER_NAME]
        body = FooResource.from_object(obj).with_finalizer(FINALIZER_NAME)
        assert body["metadata"]["finalizers"] == [FINALIZER_NAME]

    def test_without_finalizer_leaves_source_untouched(self) -> None:
        obj = _make_obj(replicas=1)
        obj["metadata"]["finalizers"] = ["a", FINALIZER_NAME, "b"]
        body = FooResource.from_object(obj).without_finalizer(FINALIZER_NAME)
        assert body["metadata"]["finalizers"] == ["a", "b"]
        assert obj["metadata"]["finalizers"] == ["a", FINALIZER_NAME, "b"]


class TestTranslateApiException:
    def test_not_found(self) -> None:
        err = translate_api_exception(ApiException(status=404, reason="Not Found"), "get")
        assert isinstance(err, NotFoundError)
        assert err.status == 404

    def test_conflict(self) -> None:
        exc = ApiException(status=409, reason="Conflict")
        exc.body = '{"kind": "Status", "reason": "Conflict"}'
        assert isinstance(translate_api_exception(exc, "update"), ConflictError)

    def test_already_exists(self) -> None:
        exc = ApiException(status=409, reason="Conflict")
        exc.body = '{"kind": "Status", "reason": "AlreadyExists"}'
        assert isinstance(translate_api_exception(exc, "create"), AlreadyExistsError)

    def test_server_error_is_generic(self) -> None:
        err = translate_api_exception(ApiException(status=500, reason="Internal Server Error"), "get")
        assert type(err) is KubeAPIError

    def test_unparsable_body(self) -> None:
        exc = ApiException(status=409, reason="Conflict")
        exc.body = "<html>"
        assert isinstance(translate_api_exception(exc, "update"), ConflictError)
