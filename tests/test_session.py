import json

import pytest

from fake_wallet import IDENTITY
from scatter.core.ApiTypes import Identity
from scatter.keys import RAW_APPKEY_PREFIX, AppKeyManager
from scatter.state import SessionCache
from scatter.storage import FileStorageProvider, MemoryStorageProvider
from shared.utils import sha256_hex


def test_session_cache_set_get_clear():
    cache = SessionCache()
    assert cache.get() is None

    identity = Identity.from_dict(IDENTITY)
    cache.set(identity)
    assert cache.get() is identity

    replacement = Identity(hash="other", name="Other")
    cache.set(replacement)
    assert cache.get() is replacement

    cache.clear()
    assert cache.get() is None


def test_session_cache_rejects_partial_updates():
    cache = SessionCache()
    with pytest.raises(TypeError):
        cache.set({"name": "not an Identity"})


def test_session_cache_persists_through_storage():
    storage = MemoryStorageProvider()
    SessionCache(storage).set(Identity.from_dict(IDENTITY))
    assert storage.load("identity")["name"] == "RandomUser"

    restored = SessionCache(storage)
    assert restored.load() == Identity.from_dict(IDENTITY)

    restored.clear()
    assert storage.load("identity") is None


def test_session_cache_discards_unreadable_identity():
    storage = MemoryStorageProvider({"identity": "garbage"})
    cache = SessionCache(storage)
    assert cache.load() is None
    assert storage.load("identity") is None


def test_identity_round_trip_keeps_extra_fields():
    data = dict(IDENTITY, personal={"firstname": "Random"})
    identity = Identity.from_dict(data)
    assert identity.extra == {"personal": {"firstname": "Random"}}
    assert identity.to_dict()["personal"] == {"firstname": "Random"}
    assert identity.account_for("eth") is None


def test_file_storage_writes_atomically_and_reloads(tmp_path):
    path = tmp_path / "nested" / "scatter.json"
    storage = FileStorageProvider(path)
    storage.save("appkey", "abc")
    storage.save("nonce", "123")
    storage.remove("nonce")
    storage.remove("missing")

    assert json.loads(path.read_text()) == {"appkey": "abc"}
    assert list(path.parent.glob("*.tmp")) == []
    assert FileStorageProvider(path).load("appkey") == "abc"


def test_file_storage_ignores_corrupt_file(tmp_path):
    path = tmp_path / "scatter.json"
    path.write_text("{not json")
    storage = FileStorageProvider(path)
    assert storage.load("appkey") is None
    storage.save("appkey", "fresh")
    assert json.loads(path.read_text()) == {"appkey": "fresh"}


def test_app_key_generated_once_and_hashed_after_pairing():
    storage = MemoryStorageProvider()
    keys = AppKeyManager(storage)

    raw = keys.appkey
    assert raw.startswith(RAW_APPKEY_PREFIX)
    assert len(raw) == len(RAW_APPKEY_PREFIX) + 24
    assert keys.appkey == raw
    assert keys.is_raw

    hashed = keys.confirm_paired()
    assert hashed == sha256_hex(raw)
    assert keys.appkey == hashed
    assert not keys.is_raw
    # Already hashed keys are left alone
    assert keys.confirm_paired() == hashed


def test_rekey_generates_new_raw_key():
    keys = AppKeyManager(MemoryStorageProvider())
    keys.confirm_paired()
    new_key = keys.rekey()
    assert new_key.startswith(RAW_APPKEY_PREFIX)
    assert keys.appkey == new_key


def test_nonce_chain():
    storage = MemoryStorageProvider()
    keys = AppKeyManager(storage)
    assert keys.nonce == ""

    first_nonce, first_next = keys.advance_nonce()
    second_nonce, second_next = keys.advance_nonce()

    assert first_nonce == ""
    assert sha256_hex(second_nonce) == first_next
    assert sha256_hex(keys.nonce) == second_next
    assert storage.load("nonce") == keys.nonce
