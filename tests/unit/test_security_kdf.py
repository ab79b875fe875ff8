"""Unit tests for the passphrase KDF used to lock private keys."""

import pytest
from vaultshare.security.kdf import (
    PARAMS_SIZE,
    derive_passphrase_key,
    generate_salt,
    pack_kdf_params,
    unpack_kdf_params,
)

FAST = {"time_cost": 1, "memory_cost": 8, "parallelism": 1}


def test_generate_salt_defaults():
    """Ensure salt generation returns bytes of the default length (16)."""
    salt = generate_salt()
    assert isinstance(salt, bytes)
    assert len(salt) == 16


def test_generate_salt_custom_length():
    salt = generate_salt(length=32)
    assert len(salt) == 32


def test_derive_key_str_and_bytes_agree():
    """Passing the same passphrase as string or bytes yields the same key."""
    salt = generate_salt()
    key_from_str = derive_passphrase_key("passphrase123", salt, **FAST)
    key_from_bytes = derive_passphrase_key(b"passphrase123", salt, **FAST)

    assert key_from_str == key_from_bytes
    assert len(key_from_str) == 32


def test_derive_key_depends_on_salt_and_passphrase():
    salt = generate_salt()
    base = derive_passphrase_key(b"pass", salt, **FAST)

    assert derive_passphrase_key(b"pass", generate_salt(), **FAST) != base
    assert derive_passphrase_key(b"other", salt, **FAST) != base


def test_derive_key_custom_length():
    key = derive_passphrase_key(b"pass", generate_salt(), key_len=64, **FAST)
    assert len(key) == 64


def test_kdf_params_pack_unpack():
    raw = pack_kdf_params(2, 1024, 4)
    assert len(raw) == PARAMS_SIZE
    assert unpack_kdf_params(raw) == (2, 1024, 4)


def test_unpack_kdf_params_rejects_truncated():
    with pytest.raises(ValueError, match="truncated"):
        unpack_kdf_params(b"\x00" * (PARAMS_SIZE - 1))
