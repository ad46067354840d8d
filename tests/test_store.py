import json
import os

import pytest

from meridian.errors import ErrorCode, GatewayError
from meridian.models.store import EncryptedFileStore, JsonFileStore, MemoryStore

# Cheap Argon2 parameters so tests stay fast
FAST_KDF = {"time_cost": 1, "memory_cost": 1024}


class TestMemoryStore:

    def test_values_are_copied(self):
        store = MemoryStore()
        value = {"tags": ["a"]}
        store.set("k", value)
        value["tags"].append("b")
        fetched = store.get("k")
        fetched["tags"].append("c")
        assert store.get("k") == {"tags": ["a"]}

    def test_prefix_keys_in_insertion_order(self):
        store = MemoryStore()
        store.set("rec:2", 2)
        store.set("other", 0)
        store.set("rec:1", 1)
        assert store.keys("rec:") == ["rec:2", "rec:1"]
        assert store.items("rec:") == [("rec:2", 2), ("rec:1", 1)]

    def test_remove_prefix(self):
        store = MemoryStore({"a:1": 1, "a:2": 2, "b:1": 3})
        assert store.remove_prefix("a:") == 2
        assert store.keys() == ["b:1"]

    def test_missing_key_default(self):
        store = MemoryStore()
        assert store.get("nope") is None
        assert store.get("nope", 5) == 5
        assert "nope" not in store

    def test_rejects_non_json_values(self):
        store = MemoryStore()
        with pytest.raises(GatewayError) as exc:
            store.set("k", object())
        assert exc.value.code == ErrorCode.VALIDATION_ERROR


class TestJsonFileStore:

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileStore(path).set("did", "did:local:1")
        assert JsonFileStore(path).get("did") == "did:local:1"

    @pytest.mark.skipif(os.name != "posix", reason="Unix permissions only")
    def test_owner_only_permissions(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileStore(path).set("k", 1)
        assert oct(path.stat().st_mode & 0o777) == oct(0o600)

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json")
        store = JsonFileStore(path)
        assert store.keys() == []

    def test_remove_prefix_writes_once(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        store.set("x:1", 1)
        store.set("x:2", 2)
        store.remove_prefix("x:")
        assert json.loads(path.read_text()) == {}

    def test_failed_write_leaves_memory_unchanged(self, tmp_path, monkeypatch):
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        store.set("x:1", 1)

        def disk_full(data):
            raise OSError("No space left on device")

        monkeypatch.setattr(store, "_write_document", disk_full)
        for change in (lambda: store.set("x:1", 2), lambda: store.set("x:2", 2),
                       lambda: store.remove("x:1"), lambda: store.remove_prefix("x:")):
            with pytest.raises(GatewayError) as exc:
                change()
            assert exc.value.code == ErrorCode.STORAGE_ERROR
            assert isinstance(exc.value.__cause__, OSError)
            assert store.items() == [("x:1", 1)]
        assert JsonFileStore(path).items() == [("x:1", 1)]


class TestEncryptedFileStore:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "sealed.json"
        EncryptedFileStore(path, "hunter2", **FAST_KDF).set("secret", {"key": "abc"})
        reopened = EncryptedFileStore(path, "hunter2", **FAST_KDF)
        assert reopened.get("secret") == {"key": "abc"}

    def test_plaintext_not_on_disk(self, tmp_path):
        path = tmp_path / "sealed.json"
        EncryptedFileStore(path, "hunter2", **FAST_KDF).set("secret", "very-private-value")
        raw = path.read_text()
        assert "very-private-value" not in raw
        assert json.loads(raw)["kdf"] == "argon2id"

    def test_wrong_password(self, tmp_path):
        path = tmp_path / "sealed.json"
        EncryptedFileStore(path, "right", **FAST_KDF).set("k", 1)
        with pytest.raises(GatewayError) as exc:
            EncryptedFileStore(path, "wrong", **FAST_KDF)
        assert exc.value.code == ErrorCode.STORAGE_ERROR

    def test_tampered_envelope(self, tmp_path):
        path = tmp_path / "sealed.json"
        EncryptedFileStore(path, "pw", **FAST_KDF).set("k", 1)
        envelope = json.loads(path.read_text())
        del envelope["iv"]
        path.write_text(json.dumps(envelope))
        with pytest.raises(GatewayError) as exc:
            EncryptedFileStore(path, "pw", **FAST_KDF)
        assert exc.value.code == ErrorCode.STORAGE_ERROR
