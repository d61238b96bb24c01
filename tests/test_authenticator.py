"""
Tests for the vault authenticator: verification token, fingerprint and
password rotation.
"""

import pytest

from localpass.vault.authenticator import (
    KEY_MASTER_PASSWORD_HASH,
    KEY_VAULT_INITIALIZED,
    KEY_VAULT_TEST,
    VaultAuthenticator,
)
from localpass.vault.codec import CredentialEntry, decode_entry, encode_entry
from localpass.vault.encryption import EncryptionService, KdfParams
from localpass.vault.exceptions import (
    AuthenticationFailure,
    DecodeError,
    StorageFailure,
    VaultStateError,
)

FAST = KdfParams(memory=64, time=1, parallelism=1)
OLD = "correct-Horse-42"
NEW = "Another-Secret-99"


@pytest.fixture
def auth(store):
    return VaultAuthenticator(store, FAST)


@pytest.fixture
def initialized(auth):
    auth.initialize(OLD)
    return auth


def _persist(store, entry, password=OLD):
    record = EncryptionService.encrypt(encode_entry(entry), password, params=FAST)
    store.put_record(entry.id, record, created_at=entry.created_at)


def _entries():
    return [
        CredentialEntry(id="a", title="A", password="pa", created_at=1, updated_at=100),
        CredentialEntry(id="b", title="B", password="pb", created_at=2, updated_at=300),
    ]


class TestInitialize:

    def test_uninitialized_by_default(self, auth):
        assert auth.is_initialized() is False

    def test_initialize_writes_metadata(self, initialized, store):
        assert initialized.is_initialized()
        assert store.get_item(KEY_VAULT_INITIALIZED) == "true"
        assert store.get_item(KEY_VAULT_TEST)
        assert store.get_item(KEY_MASTER_PASSWORD_HASH).startswith("argon2id$64$1$1$")

    def test_password_is_not_stored(self, initialized, store):
        for key in (KEY_VAULT_TEST, KEY_MASTER_PASSWORD_HASH):
            assert OLD not in store.get_item(key)

    def test_second_initialize_refused_without_changes(self, initialized, store):
        token = store.get_item(KEY_VAULT_TEST)
        with pytest.raises(VaultStateError):
            initialized.initialize(NEW)
        assert store.get_item(KEY_VAULT_TEST) == token
        assert initialized.verify(OLD)


class TestVerify:

    def test_correct_and_wrong_password(self, initialized):
        assert initialized.verify(OLD) is True
        assert initialized.verify(NEW) is False

    def test_verify_requires_initialized(self, auth):
        with pytest.raises(VaultStateError):
            auth.verify(OLD)

    def test_missing_token_is_decode_error(self, initialized, store):
        store.delete_item(KEY_VAULT_TEST)
        with pytest.raises(DecodeError):
            initialized.verify(OLD)

    def test_corrupt_token_is_decode_error(self, initialized, store):
        store.set_item(KEY_VAULT_TEST, "{broken")
        with pytest.raises(DecodeError):
            initialized.verify(OLD)

    def test_token_with_other_plaintext_fails(self, initialized, store):
        forged = EncryptionService.encrypt(b"not-the-constant", OLD, params=FAST)
        store.set_item(KEY_VAULT_TEST, forged.to_json())
        assert initialized.verify(OLD) is False

    def test_fingerprint_does_not_grant_access(self, initialized, store):
        store.set_item(KEY_MASTER_PASSWORD_HASH, "garbage")
        assert initialized.verify(OLD) is True


class TestFingerprint:

    def test_matches(self, initialized):
        assert initialized.fingerprint_matches(OLD) is True
        assert initialized.fingerprint_matches(NEW) is False

    def test_missing_or_malformed(self, initialized, store):
        store.set_item(KEY_MASTER_PASSWORD_HASH, "not$a$fingerprint")
        assert initialized.fingerprint_matches(OLD) is None
        store.delete_item(KEY_MASTER_PASSWORD_HASH)
        assert initialized.fingerprint_matches(OLD) is None


class TestRotate:

    def test_rotation_reencrypts_everything(self, initialized, store):
        entries = _entries()
        for e in entries:
            _persist(store, e)

        result = initialized.rotate(entries, OLD, NEW)

        assert result.entries == 2
        assert result.rewrapped == 0
        assert initialized.verify(NEW) is True
        assert initialized.verify(OLD) is False
        assert initialized.fingerprint_matches(NEW) is True
        for e in entries:
            stored = store.get_record(e.id)
            assert stored.created_at == e.created_at
            assert decode_entry(EncryptionService.decrypt(stored.record(), NEW)) == e
            with pytest.raises(AuthenticationFailure):
                EncryptionService.decrypt(stored.record(), OLD)

    def test_wrong_old_password_changes_nothing(self, initialized, store):
        token = store.get_item(KEY_VAULT_TEST)
        with pytest.raises(AuthenticationFailure):
            initialized.rotate(_entries(), "Wrong-Password-1", NEW)
        assert store.get_item(KEY_VAULT_TEST) == token
        assert store.count_records() == 0

    def test_unreadable_token_is_authentication_failure(self, initialized, store):
        _persist(store, _entries()[0])
        store.set_item(KEY_VAULT_TEST, "{broken")
        with pytest.raises(AuthenticationFailure):
            initialized.rotate(_entries(), OLD, NEW)
        assert store.get_item(KEY_VAULT_TEST) == "{broken"
        stored = store.get_record("a").record()
        assert decode_entry(EncryptionService.decrypt(stored, OLD)).title == "A"

    def test_undecodable_record_is_rewrapped(self, initialized, store):
        # authenticates under OLD but is not a valid entry payload
        junk = EncryptionService.encrypt(b"\x00not json", OLD, params=FAST)
        store.put_record("junk", junk)

        result = initialized.rotate([], OLD, NEW)

        assert result.rewrapped == 1
        rewrapped = store.get_record("junk").record()
        assert EncryptionService.decrypt(rewrapped, NEW) == b"\x00not json"

    def test_unauthenticated_record_left_untouched(self, initialized, store):
        foreign = EncryptionService.encrypt(b"other vault", "Foreign-Pass-77", params=FAST)
        store.put_record("foreign", foreign)

        result = initialized.rotate([], OLD, NEW)

        assert result.skipped == ("foreign",)
        assert store.get_record("foreign").record() == foreign

    def test_failure_mid_commit_rolls_back(self, initialized, store, monkeypatch):
        entries = _entries()
        for e in entries:
            _persist(store, e)
        before = {r.id: r.payload for r in store.list_records()}
        token = store.get_item(KEY_VAULT_TEST)

        real_put = store.put_record
        calls = []

        def failing_put(record_id, record, created_at=None):
            calls.append(record_id)
            if len(calls) == 2:
                raise StorageFailure("disk full")
            return real_put(record_id, record, created_at=created_at)

        monkeypatch.setattr(store, "put_record", failing_put)

        with pytest.raises(StorageFailure):
            initialized.rotate(entries, OLD, NEW)

        monkeypatch.setattr(store, "put_record", real_put)
        assert {r.id: r.payload for r in store.list_records()} == before
        assert store.get_item(KEY_VAULT_TEST) == token
        assert initialized.verify(OLD) is True
        assert initialized.verify(NEW) is False

    def test_unexpected_error_wrapped_as_storage_failure(self, initialized, store, monkeypatch):
        real_set = store.set_item

        def boom(key, value):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(store, "set_item", boom)
        with pytest.raises(StorageFailure):
            initialized.rotate([], OLD, NEW)
        monkeypatch.setattr(store, "set_item", real_set)
        assert initialized.verify(OLD) is True
