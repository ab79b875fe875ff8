import os
import struct
from typing import Tuple

from argon2.low_level import Type, hash_secret_raw

DEFAULT_TIME_COST = 3
DEFAULT_MEMORY_COST = 65536
DEFAULT_PARALLELISM = 1

# time, memory, parallelism packed into private key headers
_PARAMS_FORMAT = ">IIB"
PARAMS_SIZE = struct.calcsize(_PARAMS_FORMAT)


def generate_salt(length: int = 16) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def derive_passphrase_key(
    passphrase: bytes,
    salt: bytes,
    time_cost: int = DEFAULT_TIME_COST,
    memory_cost: int = DEFAULT_MEMORY_COST,
    parallelism: int = DEFAULT_PARALLELISM,
    key_len: int = 32,
) -> bytes:
    """
    Derive the key that locks a private key from its passphrase using Argon2id.
    Returns raw derived key bytes.
    """
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")

    return hash_secret_raw(
        secret=passphrase,
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=key_len,
        type=Type.ID,
    )


def pack_kdf_params(time_cost: int, memory_cost: int, parallelism: int) -> bytes:
    return struct.pack(_PARAMS_FORMAT, time_cost, memory_cost, parallelism)


def unpack_kdf_params(raw: bytes) -> Tuple[int, int, int]:
    if len(raw) != PARAMS_SIZE:
        raise ValueError("truncated KDF parameters")
    return struct.unpack(_PARAMS_FORMAT, raw)

