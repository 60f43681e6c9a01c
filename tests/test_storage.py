import hashlib
import hmac
import json
import logging
import os
import stat

import pytest

from macpool.crypto import seal, sign_pool, verify_pool
from macpool.errors import (
    DecryptionError,
    IntegrityError,
    MalformedData,
    PoolExistsError,
    PoolNotFound,
    PoolWriteError,
)
from macpool.models import Entry, Pool
from macpool.storage import FilePoolStorage, InMemoryPoolStorage, load_storage_provider
from macpool.utils import canonical_json

PW = "bench-password"


def _pool():
    pool = Pool.new("ops@bench", "AA:BB:CC")
    pool.entries = [Entry("AA:BB:CC:00:00:01"), Entry("AA:BB:CC:00:00:02")]
    return pool


def _write_raw(path, document, passphrase=PW):
    path.write_text(seal(canonical_json(document) if isinstance(document, dict) else document, passphrase))


def test_save_load_roundtrip(tmp_path):
    path = str(tmp_path / "mac_pool.enc")
    store = FilePoolStorage()
    store.save(_pool(), PW, path)

    got = store.load(path, PW)
    assert [e.address for e in got.entries] == ["AA:BB:CC:00:00:01", "AA:BB:CC:00:00:02"]
    assert got.signature
    assert got.vendor_prefix == "AA:BB:CC"


def test_file_is_owner_only(tmp_path):
    path = tmp_path / "mac_pool.enc"
    FilePoolStorage().save(_pool(), PW, str(path))
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_file_is_text_encoded(tmp_path):
    path = tmp_path / "mac_pool.enc"
    FilePoolStorage().save(_pool(), PW, str(path))
    assert b"AA:BB:CC" not in path.read_bytes()
    path.read_bytes().decode("ascii")


def test_missing_file(tmp_path):
    with pytest.raises(PoolNotFound):
        FilePoolStorage().load(str(tmp_path / "nope.enc"), PW)


def test_wrong_password(tmp_path):
    path = str(tmp_path / "mac_pool.enc")
    store = FilePoolStorage()
    store.save(_pool(), PW, path)
    with pytest.raises(DecryptionError):
        store.load(path, "not-the-password")


def test_malformed_after_decrypt(tmp_path):
    path = tmp_path / "mac_pool.enc"
    _write_raw(path, b"this is not json")
    with pytest.raises(MalformedData):
        FilePoolStorage().load(str(path), PW)

    _write_raw(path, {"version": 99, "addresses": []})
    with pytest.raises(MalformedData):
        FilePoolStorage().load(str(path), PW)


def test_integrity_mismatch(tmp_path):
    path = tmp_path / "mac_pool.enc"
    pool = sign_pool(_pool(), PW)
    doc = pool.to_dict()
    doc["addresses"][0]["used"] = True
    doc["addresses"][0]["used_at"] = "2024-01-01T00:00:00Z"
    doc["addresses"][0]["used_by"] = "bench9 on eth0"
    _write_raw(path, doc)  # re-encrypted but not re-signed
    with pytest.raises(IntegrityError):
        FilePoolStorage().load(str(path), PW)


def test_unsigned_pool_warns(tmp_path, caplog):
    path = tmp_path / "mac_pool.enc"
    _write_raw(path, _pool().to_dict())
    with caplog.at_level(logging.WARNING):
        pool = FilePoolStorage().load(str(path), PW)
    assert pool.signature == ""
    assert "no signature" in caplog.text


def test_unsigned_pool_rejected_when_required(tmp_path):
    path = tmp_path / "mac_pool.enc"
    _write_raw(path, _pool().to_dict())
    with pytest.raises(IntegrityError):
        FilePoolStorage(require_signature=True).load(str(path), PW)


def test_save_resigns_after_mutation(tmp_path):
    path = str(tmp_path / "mac_pool.enc")
    store = FilePoolStorage()
    store.save(_pool(), PW, path)
    pool = store.load(path, PW)
    pool.entries[0].reserved = True
    pool.touch()
    store.save(pool, PW, path)
    assert store.load(path, PW).entries[0].reserved


def test_failed_write_leaves_previous_file(tmp_path, monkeypatch):
    path = tmp_path / "mac_pool.enc"
    store = FilePoolStorage(backup=False)
    store.save(_pool(), PW, str(path))
    before = path.read_bytes()

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", boom)
    pool = store.load(str(path), PW)
    pool.entries.pop()
    with pytest.raises(PoolWriteError):
        store.save(pool, PW, str(path))

    assert path.read_bytes() == before
    assert [p.name for p in tmp_path.iterdir()] == ["mac_pool.enc"]


def test_backup_once_per_instance(tmp_path):
    path = tmp_path / "mac_pool.enc"
    FilePoolStorage().save(_pool(), PW, str(path))
    original = path.read_bytes()

    store = FilePoolStorage()
    pool = store.load(str(path), PW)
    store.save(pool, PW, str(path))
    store.save(pool, PW, str(path))

    backup = tmp_path / "mac_pool.enc.bak"
    assert backup.read_bytes() == original
    assert stat.S_IMODE(os.stat(backup).st_mode) == 0o600


def test_backup_failure_is_only_a_warning(tmp_path, monkeypatch, caplog):
    path = tmp_path / "mac_pool.enc"
    FilePoolStorage().save(_pool(), PW, str(path))

    def no_copy(*args, **kwargs):
        raise OSError("read-only")

    monkeypatch.setattr("macpool.storage.providers.file_provider.shutil.copy2", no_copy)
    with caplog.at_level(logging.WARNING):
        FilePoolStorage().save(_pool(), PW, str(path))
    assert "failed to create backup" in caplog.text
    assert FilePoolStorage().load(str(path), PW)


def test_save_creates_missing_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "mac_pool.enc"
    FilePoolStorage().save(_pool(), PW, str(path))
    assert path.exists()


def test_create_refuses_overwrite(tmp_path):
    path = str(tmp_path / "mac_pool.enc")
    store = FilePoolStorage()
    created = store.create(path, PW, "ops@bench", "AA:BB:CC")
    assert created.entries == [] and created.signature

    with pytest.raises(PoolExistsError):
        store.create(path, PW, "ops@bench")
    store.create(path, "another-pass", "ops@bench", overwrite=True)
    assert store.load(path, "another-pass").vendor_prefix is None


def test_change_passphrase(tmp_path):
    path = str(tmp_path / "mac_pool.enc")
    store = FilePoolStorage()
    store.save(_pool(), PW, path)
    store.change_passphrase(path, PW, "brand-new-pass")

    assert len(store.load(path, "brand-new-pass")) == 2
    with pytest.raises(DecryptionError):
        store.load(path, PW)


def test_lock_creates_lock_file(tmp_path):
    path = str(tmp_path / "mac_pool.enc")
    store = FilePoolStorage()
    with store.lock(path):
        store.save(_pool(), PW, path)
    assert os.path.exists(path + ".lock")


def test_memory_provider_uses_same_crypto():
    store = InMemoryPoolStorage()
    store.save(_pool(), PW, "pool")
    assert store.exists("pool")
    assert json.loads(json.dumps(store.load("pool", PW).to_dict()))["created_by"] == "ops@bench"
    assert b"ops@bench" not in store.blobs["pool"]
    with pytest.raises(DecryptionError):
        store.load("pool", "nope-nope")
    with pytest.raises(PoolNotFound):
        store.load("other", PW)


def test_storage_factory(monkeypatch):
    monkeypatch.delenv("MACPOOL_STORAGE_PROVIDER", raising=False)
    assert isinstance(load_storage_provider(), FilePoolStorage)
    assert isinstance(load_storage_provider({"provider": "memory"}), InMemoryPoolStorage)

    monkeypatch.setenv("MACPOOL_STORAGE_PROVIDER", "memory")
    assert isinstance(load_storage_provider(), InMemoryPoolStorage)

    store = load_storage_provider({"provider": "file", "require_signature": True, "backup": False})
    assert store.require_signature and not store.backup

    with pytest.raises(ValueError):
        load_storage_provider({"provider": "s3"})


# Field order, compact separators, zero time for unused entries, fractional
# offsets and escaped "&" exactly as first-generation pool files were signed.
FIELD_ORDER_BODY = (
    '{"version":1,"addresses":['
    '{"address":"AA:BB:CC:00:00:01","used":false,"used_at":"0001-01-01T00:00:00Z"},'
    '{"address":"AA:BB:CC:00:00:02","used":true,"used_at":"2024-03-01T09:15:42.123456789+03:00",'
    '"used_by":"bench1 on enp3s0"},'
    '{"address":"AA:BB:CC:00:00:03","used":false,"used_at":"0001-01-01T00:00:00Z","reserved":true,'
    '"comment":"R\\u0026D spare"}],'
    '"last_updated":"2024-03-01T09:15:42.5+03:00","created_by":"ops@bench","mac_vendor_prefix":"AA:BB:CC"}'
)


def _field_order_file(path, passphrase=PW):
    signature = hmac.new(passphrase.encode(), FIELD_ORDER_BODY.encode(), hashlib.sha256).hexdigest()
    doc = json.loads(FIELD_ORDER_BODY)
    doc["signature"] = signature
    path.write_text(seal(json.dumps(doc, indent=2).encode(), passphrase))
    return signature


def test_field_order_signed_pool_loads(tmp_path):
    path = tmp_path / "mac_pool.enc"
    signature = _field_order_file(path)

    pool = FilePoolStorage(require_signature=True).load(str(path), PW)
    assert [e.address for e in pool.entries] == ["AA:BB:CC:00:00:01", "AA:BB:CC:00:00:02", "AA:BB:CC:00:00:03"]
    assert pool.entries[0].used_at is None
    assert pool.entries[1].used_at == "2024-03-01T09:15:42.123456789+03:00"
    assert pool.entries[2].comment == "R&D spare"
    assert pool.last_updated == "2024-03-01T09:15:42.5+03:00"

    # re-signing an unchanged pool reproduces the stored signature
    assert sign_pool(pool, PW).signature == signature


def test_field_order_signed_pool_tampered(tmp_path):
    path = tmp_path / "mac_pool.enc"
    signature = hmac.new(PW.encode(), FIELD_ORDER_BODY.encode(), hashlib.sha256).hexdigest()
    doc = json.loads(FIELD_ORDER_BODY)
    doc["signature"] = signature
    doc["addresses"][2]["reserved"] = False
    path.write_text(seal(json.dumps(doc).encode(), PW))
    with pytest.raises(IntegrityError):
        FilePoolStorage().load(str(path), PW)


def test_saved_pool_is_signed_in_field_order(tmp_path):
    path = tmp_path / "mac_pool.enc"
    _field_order_file(path)
    store = FilePoolStorage()
    pool = store.load(str(path), PW)
    store.save(pool, PW, str(path))

    reread = store.load(str(path), PW)
    expected = hmac.new(PW.encode(), reread.to_signing_bytes(), hashlib.sha256).hexdigest()
    assert reread.signature == expected
    assert reread.to_signing_bytes().startswith(b'{"version":1,"addresses":[{"address":"AA:BB:CC:00:00:01"')


def test_sorted_key_signature_still_verifies(tmp_path):
    path = tmp_path / "mac_pool.enc"
    pool = _pool()
    pool.signature = hmac.new(PW.encode(), pool.to_sorted_signing_bytes(), hashlib.sha256).hexdigest()
    assert verify_pool(pool, PW)
    _write_raw(path, pool.to_dict())
    assert len(FilePoolStorage(require_signature=True).load(str(path), PW)) == 2


def test_lock_failure_is_a_write_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    with pytest.raises(PoolWriteError, match="failed to lock"):
        with FilePoolStorage().lock(str(blocker / "mac_pool.enc")):
            pass
