"""
Tests for the key hierarchy primitives
"""

import base64

import pytest

from cipherdocs.core.crypto import (
    CryptoUtils,
    SymmetricKey,
    WrappingKey,
    IV_LENGTH,
    SALT_LENGTH,
    b64decode,
)
from cipherdocs.core.errors import DecryptionError, KeyDerivationError, UnwrapError


class TestKeyGeneration:
    def test_salt_is_16_random_bytes(self):
        a = CryptoUtils.generate_salt()
        b = CryptoUtils.generate_salt()
        assert len(a) == SALT_LENGTH
        assert a != b

    def test_recovery_key_is_32_bytes_base64(self):
        recovery = CryptoUtils.generate_recovery_key_string()
        assert len(base64.b64decode(recovery)) == 32

    def test_random_symmetric_key_is_256_bit(self):
        key = CryptoUtils.generate_random_symmetric_key()
        assert len(key.export_raw()) == 32

    def test_keys_never_print_raw_material(self):
        key = CryptoUtils.generate_random_symmetric_key()
        assert "redacted" in repr(key)


class TestDerivation:
    def test_password_derivation_is_deterministic_per_salt(self):
        salt = CryptoUtils.generate_salt()
        master = CryptoUtils.generate_random_symmetric_key()
        k1 = CryptoUtils.derive_key_from_password("hunter2-Password!", salt)
        k2 = CryptoUtils.derive_key_from_password("hunter2-Password!", salt)

        wrapped = CryptoUtils.encrypt_key(master, k1)
        assert CryptoUtils.decrypt_key(wrapped.ciphertext, wrapped.iv, k2) == master.export_raw()

    def test_wrapping_key_has_no_data_encryption(self):
        salt = CryptoUtils.generate_salt()
        key = CryptoUtils.derive_key_from_password("pw-Example1!", salt)
        assert isinstance(key, WrappingKey)
        assert not hasattr(key, "encrypt")
        assert not hasattr(key, "encrypt_string")

    def test_empty_password_rejected(self):
        with pytest.raises(KeyDerivationError):
            CryptoUtils.derive_key_from_password("", CryptoUtils.generate_salt())

    def test_malformed_recovery_string_rejected(self):
        with pytest.raises(KeyDerivationError, match="Invalid recovery key format"):
            CryptoUtils.derive_key_from_recovery_string("not base64 !!", CryptoUtils.generate_salt())


class TestWrapping:
    def test_wrap_round_trip_with_recovery_key(self):
        salt = CryptoUtils.generate_salt()
        master = CryptoUtils.generate_random_symmetric_key()
        recovery = CryptoUtils.generate_recovery_key_string()

        wrapped = CryptoUtils.encrypt_key(master, CryptoUtils.derive_key_from_recovery_string(recovery, salt))
        assert len(wrapped.iv) == IV_LENGTH

        unwrapping_key = CryptoUtils.derive_key_from_recovery_string(recovery, salt)
        raw = CryptoUtils.decrypt_key(wrapped.ciphertext, wrapped.iv, unwrapping_key)
        assert CryptoUtils.import_symmetric_key(raw) == master

    def test_wrong_key_and_corruption_fail_identically(self):
        salt = CryptoUtils.generate_salt()
        master = CryptoUtils.generate_random_symmetric_key()
        right = CryptoUtils.derive_key_from_password("Right-Password1!", salt)
        wrong = CryptoUtils.derive_key_from_password("Wrong-Password1!", salt)
        wrapped = CryptoUtils.encrypt_key(master, right)

        with pytest.raises(UnwrapError) as wrong_key:
            CryptoUtils.decrypt_key(wrapped.ciphertext, wrapped.iv, wrong)

        corrupted = bytes([wrapped.ciphertext[0] ^ 0x01]) + wrapped.ciphertext[1:]
        with pytest.raises(UnwrapError) as bad_data:
            CryptoUtils.decrypt_key(corrupted, wrapped.iv, right)

        assert str(wrong_key.value) == str(bad_data.value)

    def test_import_rejects_wrong_length(self):
        with pytest.raises(UnwrapError):
            CryptoUtils.import_symmetric_key(b"short")


class TestSymmetricKey:
    def test_string_encryption_prepends_iv(self, master_key):
        encrypted = master_key.encrypt_string("search keys")
        payload = b64decode(encrypted)
        assert len(payload) > IV_LENGTH
        assert master_key.decrypt_string(encrypted) == "search keys"

    def test_decrypt_with_other_key_fails(self, master_key):
        other = SymmetricKey(CryptoUtils.generate_random_symmetric_key().export_raw())
        encrypted = master_key.encrypt_string("secret")
        with pytest.raises(DecryptionError):
            other.decrypt_string(encrypted)

    def test_json_round_trip(self, master_key):
        data = {"a": 1, "b": ["x"]}
        assert master_key.decrypt_json(master_key.encrypt_json(data)) == data
