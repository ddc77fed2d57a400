import json
from pathlib import Path

import pytest

from tgdebug.cache import CacheStore, read_bytes, write_bytes_atomic
from tgdebug.errors import PersistenceError
from tgdebug.models import CacheDocument, Chat, Topic


def _doc() -> CacheDocument:
    chat = Chat(
        id=-1001234567890,
        kind="supergroup",
        display_name="Team",
        first_seen_at=100,
        last_seen_at=200,
        message_count=3,
        topics={7: Topic(thread_id=7, name="Bugs", message_count=2, last_seen_at=200)},
    )
    return CacheDocument(token="123:abc", offset=43, chats={chat.id: chat})


def test_save_then_load_preserves_document(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "nested" / "cache.json")
    store.save(_doc())

    loaded = store.load()

    assert loaded == _doc()
    assert loaded.chats[-1001234567890].topics[7].name == "Bugs"


def test_chat_keys_are_strings_on_disk(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    CacheStore(path).save(_doc())

    data = json.loads(path.read_text(encoding="utf-8"))

    assert data["schema_version"] == 1
    assert list(data["chats"]) == ["-1001234567890"]


def test_missing_file_loads_empty(tmp_path: Path) -> None:
    loaded = CacheStore(tmp_path / "absent.json").load()

    assert loaded == CacheDocument()


def test_corrupt_file_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")

    assert CacheStore(path).load() == CacheDocument()


def test_schema_mismatch_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text(json.dumps({"schema_version": 99, "offset": 10}), encoding="utf-8")

    assert CacheStore(path).load().offset == 0


def test_unknown_fields_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text(
        json.dumps({"schema_version": 1, "offset": 5, "future": True}), encoding="utf-8"
    )

    loaded = CacheStore(path).load()

    assert loaded.offset == 5
    assert loaded.chats == {}


def test_atomic_write_leaves_no_temp_files(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    write_bytes_atomic(path, b"one")
    write_bytes_atomic(path, b"two")

    assert read_bytes(path) == b"two"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["cache.json"]


def test_failed_write_keeps_previous_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "cache.json"
    write_bytes_atomic(path, b"previous")

    def fail_replace(self, target):
        raise OSError("disk full")

    monkeypatch.setattr(Path, "replace", fail_replace)

    with pytest.raises(PersistenceError, match="disk full"):
        write_bytes_atomic(path, b"next")

    assert path.read_bytes() == b"previous"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["cache.json"]


def test_read_bytes_missing_returns_none(tmp_path: Path) -> None:
    assert read_bytes(tmp_path / "nope") is None


def test_clear_removes_file(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.json")
    store.save(_doc())
    store.clear()
    store.clear()

    assert not store.path.exists()
