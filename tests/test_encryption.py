"""
Tests for the vault encryption service.

Covers:
- Encrypt/decrypt round trip (bytes, str, unicode, empty)
- Wrong password and single-bit tampering fail authentication
- Fresh salt and iv on every encryption
- Record envelope serialization and malformed envelopes
- Legacy v1 (PBKDF2) records still decrypt
- Master password policy
"""

import json
import os

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from localpass.vault.encryption import (
    DEFAULT_KDF_PARAMS,
    LEGACY_KDF_PARAMS,
    EncryptedRecord,
    EncryptionService,
    KdfParams,
    password_strength,
    verify_master_password,
)
from localpass.vault.exceptions import (
    AuthenticationFailure,
    DecodeError,
    RecordFormatError,
)
from localpass.vault.secret import SecretPassword

FAST = KdfParams(memory=64, time=1, parallelism=1)
PASSWORD = "correct-Horse-42"


def _flip_bit(data: bytes, index: int, bit: int = 0) -> bytes:
    buf = bytearray(data)
    buf[index] ^= 1 << bit
    return bytes(buf)


def _with(record: EncryptedRecord, **changes) -> EncryptedRecord:
    data = dict(
        version=record.version,
        salt=record.salt,
        iv=record.iv,
        ciphertext=record.ciphertext,
        auth_tag=record.auth_tag,
        kdf=record.kdf,
    )
    data.update(changes)
    return EncryptedRecord(**data)


class TestKeyDerivation:

    def test_deterministic_for_same_inputs(self):
        salt = EncryptionService.generate_salt()
        k1 = EncryptionService.derive_key(PASSWORD, salt, FAST)
        k2 = EncryptionService.derive_key(PASSWORD, salt, FAST)
        assert k1 == k2
        assert len(k1) == 32

    def test_salt_changes_key(self):
        k1 = EncryptionService.derive_key(PASSWORD, b"a" * 32, FAST)
        k2 = EncryptionService.derive_key(PASSWORD, b"b" * 32, FAST)
        assert k1 != k2

    def test_params_change_key(self):
        salt = b"s" * 32
        k1 = EncryptionService.derive_key(PASSWORD, salt, FAST)
        k2 = EncryptionService.derive_key(PASSWORD, salt, KdfParams(memory=64, time=2, parallelism=1))
        assert k1 != k2

    def test_secret_password_and_str_agree(self):
        salt = b"s" * 32
        with SecretPassword(PASSWORD) as secret:
            assert EncryptionService.derive_key(secret, salt, FAST) == \
                EncryptionService.derive_key(PASSWORD, salt, FAST)

    def test_wiped_secret_cannot_derive(self):
        secret = SecretPassword(PASSWORD)
        secret.wipe()
        with pytest.raises(ValueError):
            EncryptionService.derive_key(secret, b"s" * 32, FAST)

    def test_default_params(self):
        assert DEFAULT_KDF_PARAMS == KdfParams(memory=65536, time=3, parallelism=4)

    @pytest.mark.parametrize("params", [
        KdfParams(memory=0, time=1, parallelism=1),
        KdfParams(memory=64, time=0, parallelism=1),
        KdfParams(memory=8, time=1, parallelism=2),
        KdfParams(memory=64, time=KdfParams.MAX_TIME + 1, parallelism=1),
        KdfParams(memory=KdfParams.MAX_MEMORY + 1, time=1, parallelism=1),
    ])
    def test_invalid_params_rejected(self, params):
        with pytest.raises(ValueError):
            params.validate()


class TestEncryptDecrypt:

    @pytest.mark.parametrize("plaintext", [
        b"hunter2",
        b"",
        "пароль 密码 🔑".encode("utf-8"),
        os.urandom(4096),
    ])
    def test_round_trip(self, plaintext):
        record = EncryptionService.encrypt(plaintext, PASSWORD, params=FAST)
        assert EncryptionService.decrypt(record, PASSWORD) == plaintext

    def test_str_plaintext_is_utf8_encoded(self):
        record = EncryptionService.encrypt("héllo", PASSWORD, params=FAST)
        assert EncryptionService.decrypt(record, PASSWORD) == "héllo".encode("utf-8")

    def test_record_shape(self):
        record = EncryptionService.encrypt(b"x" * 10, PASSWORD, params=FAST)
        assert record.version == EncryptionService.CURRENT_VERSION
        assert len(record.salt) == 32
        assert len(record.iv) == 12
        assert len(record.auth_tag) == 16
        assert len(record.ciphertext) == 10
        assert record.kdf == FAST

    def test_wrong_password_fails(self):
        record = EncryptionService.encrypt(b"secret", PASSWORD, params=FAST)
        with pytest.raises(AuthenticationFailure):
            EncryptionService.decrypt(record, "correct-Horse-43")

    def test_supplied_salt_and_iv_are_used(self):
        salt, iv = b"\x01" * 32, b"\x02" * 12
        record = EncryptionService.encrypt(b"data", PASSWORD, salt=salt, iv=iv, params=FAST)
        assert record.salt == salt
        assert record.iv == iv
        assert EncryptionService.decrypt(record, PASSWORD) == b"data"

    def test_bad_iv_length_rejected(self):
        with pytest.raises(ValueError):
            EncryptionService.encrypt(b"data", PASSWORD, iv=b"short", params=FAST)

    def test_fresh_salt_and_iv_every_time(self):
        records = [EncryptionService.encrypt(b"same", PASSWORD, params=FAST) for _ in range(20)]
        pairs = {(r.salt, r.iv) for r in records}
        assert len(pairs) == 20
        assert len({r.ciphertext for r in records}) == 20


class TestTamperDetection:

    @pytest.fixture
    def record(self):
        return EncryptionService.encrypt(b"top secret payload", PASSWORD, params=FAST)

    @pytest.mark.parametrize("index", [0, 5, -1])
    def test_ciphertext_bit_flip(self, record, index):
        tampered = _with(record, ciphertext=_flip_bit(record.ciphertext, index))
        with pytest.raises(AuthenticationFailure):
            EncryptionService.decrypt(tampered, PASSWORD)

    @pytest.mark.parametrize("index", [0, 11])
    def test_iv_bit_flip(self, record, index):
        tampered = _with(record, iv=_flip_bit(record.iv, index, bit=7))
        with pytest.raises(AuthenticationFailure):
            EncryptionService.decrypt(tampered, PASSWORD)

    @pytest.mark.parametrize("index", [0, 15])
    def test_auth_tag_bit_flip(self, record, index):
        tampered = _with(record, auth_tag=_flip_bit(record.auth_tag, index, bit=3))
        with pytest.raises(AuthenticationFailure):
            EncryptionService.decrypt(tampered, PASSWORD)

    def test_salt_bit_flip(self, record):
        tampered = _with(record, salt=_flip_bit(record.salt, 0))
        with pytest.raises(AuthenticationFailure):
            EncryptionService.decrypt(tampered, PASSWORD)

    def test_kdf_params_are_authenticated(self, record):
        tampered = _with(record, kdf=KdfParams(memory=128, time=1, parallelism=1))
        with pytest.raises(AuthenticationFailure):
            EncryptionService.decrypt(tampered, PASSWORD)

    def test_version_downgrade_fails(self, record):
        downgraded = _with(record, version=EncryptionService.LEGACY_VERSION, kdf=None)
        with pytest.raises(AuthenticationFailure):
            EncryptionService.decrypt(downgraded, PASSWORD)


class TestRecordEnvelope:

    def test_json_round_trip(self):
        record = EncryptionService.encrypt(b"payload", PASSWORD, params=FAST)
        restored = EncryptedRecord.from_json(record.to_json())
        assert restored == record
        assert EncryptionService.decrypt(restored, PASSWORD) == b"payload"

    def test_wire_field_names(self):
        record = EncryptionService.encrypt(b"payload", PASSWORD, params=FAST)
        data = json.loads(record.to_json())
        assert set(data) == {"version", "salt", "iv", "ciphertext", "authTag", "kdf"}
        assert data["version"] == 2
        assert data["kdf"] == {"memory": 64, "time": 1, "parallelism": 1}

    @pytest.mark.parametrize("mutate", [
        lambda d: d.pop("authTag"),
        lambda d: d.pop("kdf"),
        lambda d: d.update(version=99),
        lambda d: d.update(version="2"),
        lambda d: d.update(iv="!!not-base64!!"),
        lambda d: d.update(iv="AAAA"),
        lambda d: d.update(authTag="AAAA"),
        lambda d: d.update(salt="AAAA"),
        lambda d: d.update(kdf={"memory": 64, "time": 1}),
        lambda d: d.update(kdf={"memory": 10 ** 9, "time": 1, "parallelism": 1}),
    ])
    def test_malformed_envelope(self, mutate):
        data = EncryptionService.encrypt(b"payload", PASSWORD, params=FAST).to_dict()
        mutate(data)
        with pytest.raises(RecordFormatError):
            EncryptedRecord.from_dict(data)

    def test_not_json(self):
        with pytest.raises(RecordFormatError):
            EncryptedRecord.from_json("{not json")

    def test_format_error_is_decode_error_not_auth_failure(self):
        assert issubclass(RecordFormatError, DecodeError)
        assert not issubclass(RecordFormatError, AuthenticationFailure)


class TestLegacyRecords:

    def test_v1_record_decrypts(self):
        salt = os.urandom(16)
        iv = os.urandom(12)
        key = EncryptionService.derive_key(PASSWORD, salt, LEGACY_KDF_PARAMS, version=1)
        sealed = AESGCM(key).encrypt(iv, b"old entry", None)
        data = {
            "version": 1,
            "salt": EncryptionService.encode_for_storage(salt),
            "iv": EncryptionService.encode_for_storage(iv),
            "ciphertext": EncryptionService.encode_for_storage(sealed[:-16]),
            "authTag": EncryptionService.encode_for_storage(sealed[-16:]),
        }

        record = EncryptedRecord.from_json(json.dumps(data))
        assert record.kdf is None
        assert EncryptionService.decrypt(record, PASSWORD) == b"old entry"
        with pytest.raises(AuthenticationFailure):
            EncryptionService.decrypt(record, "wrong-Password-1")


class TestMasterPasswordPolicy:

    def test_strength_levels(self):
        assert password_strength("abc") == "weak"
        assert password_strength("abcdefgh") == "weak"
        assert password_strength("abcdefgh12") == "medium"
        assert password_strength("Abcdefgh12!x") == "strong"

    def test_accepts_reasonable_password(self):
        assert verify_master_password(PASSWORD) == (True, "")

    @pytest.mark.parametrize("password", ["", "Ab1!", "abcdefgh", "password123"])
    def test_rejects_bad_passwords(self, password):
        ok, message = verify_master_password(password)
        assert not ok
        assert message

    def test_min_length_is_configurable(self):
        ok, message = verify_master_password("Abc-1234", min_length=12)
        assert not ok
        assert "12" in message
