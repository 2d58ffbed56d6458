from __future__ import annotations

from pathlib import Path

import pytest

from anycowork_runtime.storage.store import InMemoryStore, JsonDirStore, KeyedStore


@pytest.fixture(params=["memory", "dir"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> KeyedStore:
    if request.param == "memory":
        return InMemoryStore()
    return JsonDirStore(tmp_path / "store")


def test_put_get_delete(store: KeyedStore) -> None:
    assert isinstance(store, KeyedStore)
    assert store.get("job:1") is None

    store.put("job:1", {"status": "running", "steps": []})
    assert store.get("job:1") == {"status": "running", "steps": []}

    store.put("job:1", {"status": "completed"})
    assert store.get("job:1") == {"status": "completed"}

    assert store.delete("job:1") is True
    assert store.delete("job:1") is False
    assert store.get("job:1") is None


def test_list_keys_by_prefix(store: KeyedStore) -> None:
    for key in ("job:b", "session:x", "job:a", "job/c"):
        store.put(key, {"k": key})
    assert store.list_keys("job:") == ["job:a", "job:b"]
    assert store.list_keys() == ["job/c", "job:a", "job:b", "session:x"]


def test_get_returns_a_copy(store: KeyedStore) -> None:
    store.put("k", {"items": [1]})
    value = store.get("k")
    assert value is not None
    value["items"].append(2)
    assert store.get("k") == {"items": [1]}


def test_memory_store_rejects_non_json_values() -> None:
    with pytest.raises(TypeError):
        InMemoryStore().put("k", {"bad": object()})


def test_dir_store_persists_across_instances(tmp_path: Path) -> None:
    JsonDirStore(tmp_path).put("session:42", {"title": "héllo"})
    assert JsonDirStore(tmp_path).get("session:42") == {"title": "héllo"}
    assert not list(tmp_path.glob("*.tmp"))
