import pytest

from watchlog.services.kv_store import (
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    StorageError,
    open_stores,
)


@pytest.mark.asyncio
async def test_memory_store_copies_values():
    store = MemoryKeyValueStore()
    payload = {"items": [1, 2]}

    await store.set({"watchLog": payload})
    payload["items"].append(3)
    loaded = await store.get("watchLog")
    loaded["items"].append(4)

    assert await store.get("watchLog") == {"items": [1, 2]}
    assert await store.get("missing", []) == []


@pytest.mark.asyncio
async def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "local.json"

    await JsonFileKeyValueStore(path).set({"watchLog": [{"subjectId": "abc123def"}], "lastLogged": {}})
    await JsonFileKeyValueStore(path).set({"lastLogged": {"Child:abc123def": "2024-05-01T12:00:00+00:00"}})

    reopened = JsonFileKeyValueStore(path)
    assert await reopened.get("watchLog") == [{"subjectId": "abc123def"}]
    assert await reopened.get("lastLogged") == {"Child:abc123def": "2024-05-01T12:00:00+00:00"}
    assert not path.with_name("local.json.tmp").exists()


@pytest.mark.asyncio
async def test_json_store_missing_file_returns_default(tmp_path):
    store = JsonFileKeyValueStore(tmp_path / "absent.json")

    assert await store.get("watchLog", []) == []


@pytest.mark.asyncio
async def test_json_store_corrupt_file_raises_storage_error(tmp_path):
    path = tmp_path / "local.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StorageError):
        await JsonFileKeyValueStore(path).get("watchLog")


def test_open_stores_uses_json_files_without_database(settings, console, tmp_path):
    pair = open_stores(settings, console=console)

    assert isinstance(pair.local, JsonFileKeyValueStore)
    assert pair.local.path == tmp_path / "local.json"
    assert pair.sync.path == tmp_path / "sync.json"
