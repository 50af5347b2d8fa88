"""Tests for the event translator (cache notification -> queue key)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from foo_controller.errors import InvalidKeyError
from foo_controller.event_handler import EventTranslator, deletion_handling_key, meta_namespace_key
from foo_controller.models import DeletedFinalStateUnknown


def _make_obj(name: str = "test-foo", namespace: str = "default") -> dict:
    return {"apiVersion": "example.com/v1", "kind": "Foo", "metadata": {"name": name, "namespace": namespace}}


class TestKeyFunctions:
    def test_dict_object(self) -> None:
        assert meta_namespace_key(_make_obj()) == "default/test-foo"

    def test_model_object(self) -> None:
        obj = SimpleNamespace(metadata=SimpleNamespace(name="test-foo", namespace="prod"))
        assert meta_namespace_key(obj) == "prod/test-foo"

    def test_cluster_scoped_object(self) -> None:
        assert meta_namespace_key({"metadata": {"name": "global"}}) == "global"

    def test_missing_name_raises(self) -> None:
        with pytest.raises(InvalidKeyError):
            meta_namespace_key({"metadata": {"namespace": "default"}})

    def test_tombstone_uses_stored_key(self) -> None:
        tombstone = DeletedFinalStateUnknown(key="default/gone")
        assert deletion_handling_key(tombstone) == "default/gone"

    def test_deletion_key_for_live_object(self) -> None:
        assert deletion_handling_key(_make_obj()) == "default/test-foo"


class TestEventTranslator:
    def test_add_enqueues_key(self) -> None:
        queue = MagicMock()
        EventTranslator(queue).on_add(_make_obj())
        queue.add.assert_called_once_with("default/test-foo")

    def test_update_uses_new_object(self) -> None:
        queue = MagicMock()
        EventTranslator(queue).on_update(_make_obj("old"), _make_obj("new"))
        queue.add.assert_called_once_with("default/new")

    def test_delete_enqueues_key(self) -> None:
        queue = MagicMock()
        EventTranslator(queue).on_delete(_make_obj())
        queue.add.assert_called_once_with("default/test-foo")

    def test_delete_tombstone_enqueues_key(self) -> None:
        queue = MagicMock()
        EventTranslator(queue).on_delete(DeletedFinalStateUnknown(key="default/test-foo"))
        queue.add.assert_called_once_with("default/test-foo")

    def test_bad_object_does_not_raise(self) -> None:
        queue = MagicMock()
        EventTranslator(queue).on_add({"metadata": {}})
        queue.add.assert_not_called()

    def test_queue_failure_does_not_raise(self) -> None:
        queue = MagicMock()
        queue.add.side_effect = RuntimeError("boom")
        # Should not raise
        EventTranslator(queue).on_add(_make_obj())
