"""Cryptographic primitives for the sharing protocol.

A vaultshare private key is an X25519 encryption key paired with an Ed25519
signing key. Its key id is the first 8 bytes of SHA-256 over both public keys.

Binary layouts (all big-endian):

Locked private key (armored as PRIVATE KEY):
- 4 bytes: magic b'VSK1'
- 1 byte: version (1)
- 9 bytes: Argon2id time/memory/parallelism
- 1 byte: len_salt (S), S bytes: salt
- 12 bytes: nonce
- AES-256-GCM(x25519 private || ed25519 private), header as associated data

Public key (armored as PUBLIC KEY):
- 4 bytes: magic b'VSP1', 1 byte: version, 32 bytes X25519, 32 bytes Ed25519

Message (armored as MESSAGE):
- 4 bytes: magic b'VSM1', 1 byte: version, 1 byte: alg_id (1 = X25519/HKDF/AESGCM)
- 8 bytes: recipient key id
- 32 bytes: ephemeral X25519 public key
- 12 bytes: nonce
- AES-256-GCM(signer key id || Ed25519 signature || plaintext), header as associated data

Detached signature (armored as SIGNATURE):
- 4 bytes: magic b'VSS1', 1 byte: version, 8 bytes: signer key id, 64 bytes: signature

Signatures are computed over the plaintext, never over ciphertext, and always
cover the signing context: ``b"vaultshare-signature\\x00" || u16(len(ctx)) || ctx || data``.
"""
from __future__ import annotations

import hashlib
import logging
import os
import struct
from typing import Iterable, List, NamedTuple, Optional, Sequence, Union

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from vaultshare.core.exceptions import (
    DecryptionFailedError,
    EncryptionFailedError,
    LockedKeyError,
    MissingPassphraseError,
    MissingUserKeyError,
    VerificationFailedError,
)
from vaultshare.core.models import (
    Address,
    EncryptionKey,
    SignatureContext,
    UserData,
    WrappedKey,
    b64e,
)

from .armor import PRIVATE_KEY, PUBLIC_KEY, armor, unarmor, unarmor_message
from .kdf import (
    DEFAULT_MEMORY_COST,
    DEFAULT_PARALLELISM,
    DEFAULT_TIME_COST,
    PARAMS_SIZE,
    derive_passphrase_key,
    generate_salt,
    pack_kdf_params,
    unpack_kdf_params,
)

logger = logging.getLogger(__name__)

VERSION = 1
KEY_MAGIC = b"VSK1"
PUBLIC_KEY_MAGIC = b"VSP1"
MESSAGE_MAGIC = b"VSM1"
SIGNATURE_MAGIC = b"VSS1"
ALG_ID_X25519_AESGCM = 1

KEY_ID_SIZE = 8
NONCE_SIZE = 12
SIGNATURE_SIZE = 64
RAW_KEY_SIZE = 32

VAULT_CONTENT_AD = b"vaultcontent"
ITEM_KEY_AD = b"itemkey"

_SIGNATURE_PREFIX = b"vaultshare-signature\x00"
_MESSAGE_INFO = b"vaultshare-message-v1"
_MESSAGE_HEADER_SIZE = 4 + 1 + 1 + KEY_ID_SIZE + RAW_KEY_SIZE + NONCE_SIZE
_INNER_PREFIX_SIZE = KEY_ID_SIZE + SIGNATURE_SIZE

ContextLike = Optional[SignatureContext]


# ----------------------------------------------------------------------
# Keys
# ----------------------------------------------------------------------


def _key_id(encryption_raw: bytes, verification_raw: bytes) -> bytes:
    return hashlib.sha256(encryption_raw + verification_raw).digest()[:KEY_ID_SIZE]


class PublicKey:
    """Recipient and verification half of a vaultshare key."""

    __slots__ = ("encryption_key", "verification_key", "raw_key_id")

    def __init__(self, encryption_key: x25519.X25519PublicKey, verification_key: ed25519.Ed25519PublicKey):
        self.encryption_key = encryption_key
        self.verification_key = verification_key
        self.raw_key_id = _key_id(
            encryption_key.public_bytes_raw(), verification_key.public_bytes_raw()
        )

    @property
    def key_id(self) -> str:
        return self.raw_key_id.hex()

    def to_bytes(self) -> bytes:
        return (
            PUBLIC_KEY_MAGIC
            + struct.pack("B", VERSION)
            + self.encryption_key.public_bytes_raw()
            + self.verification_key.public_bytes_raw()
        )

    def armored(self) -> str:
        return armor(self.to_bytes(), PUBLIC_KEY)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "PublicKey":
        if len(raw) != 5 + 2 * RAW_KEY_SIZE or raw[:4] != PUBLIC_KEY_MAGIC:
            raise ValueError("Invalid public key format")
        if raw[4] != VERSION:
            raise ValueError("Unsupported public key version")
        enc = x25519.X25519PublicKey.from_public_bytes(raw[5 : 5 + RAW_KEY_SIZE])
        ver = ed25519.Ed25519PublicKey.from_public_bytes(raw[5 + RAW_KEY_SIZE :])
        return cls(enc, ver)

    @classmethod
    def from_armored(cls, text: str) -> "PublicKey":
        return cls.from_bytes(unarmor(text, PUBLIC_KEY))

    def __repr__(self):
        return f"PublicKey(key_id={self.key_id!r})"


class UnlockedKey:
    """A private key whose passphrase lock has been removed, held in memory only.

    The same object serves as decryption key and signing key.
    """

    __slots__ = ("_decryption_key", "_signing_key", "public_key")

    def __init__(self, decryption_key: x25519.X25519PrivateKey, signing_key: ed25519.Ed25519PrivateKey):
        self._decryption_key = decryption_key
        self._signing_key = signing_key
        self.public_key = PublicKey(decryption_key.public_key(), signing_key.public_key())

    @property
    def key_id(self) -> str:
        return self.public_key.key_id

    @classmethod
    def generate(cls) -> "UnlockedKey":
        return cls(x25519.X25519PrivateKey.generate(), ed25519.Ed25519PrivateKey.generate())

    def _raw_private(self) -> bytes:
        return self._decryption_key.private_bytes_raw() + self._signing_key.private_bytes_raw()

    def exchange(self, peer: x25519.X25519PublicKey) -> bytes:
        return self._decryption_key.exchange(peer)

    def sign(self, data: bytes) -> bytes:
        return self._signing_key.sign(data)

    def lock(
        self,
        passphrase: Union[str, bytes],
        time_cost: int = DEFAULT_TIME_COST,
        memory_cost: int = DEFAULT_MEMORY_COST,
        parallelism: int = DEFAULT_PARALLELISM,
    ) -> str:
        """Return the armored, passphrase-locked form of this key."""
        salt = generate_salt()
        nonce = os.urandom(NONCE_SIZE)
        header = bytearray()
        header += KEY_MAGIC
        header += struct.pack("B", VERSION)
        header += pack_kdf_params(time_cost, memory_cost, parallelism)
        header += struct.pack("B", len(salt))
        header += salt
        header += nonce

        kek = derive_passphrase_key(passphrase, salt, time_cost, memory_cost, parallelism)
        ct = AESGCM(kek).encrypt(nonce, self._raw_private(), bytes(header))
        return armor(bytes(header) + ct, PRIVATE_KEY)

    def __repr__(self):
        return f"UnlockedKey(key_id={self.key_id!r})"


class GeneratedKey(NamedTuple):
    key_id: str
    private_key: str
    public_key: str


def generate_private_key(
    passphrase: Union[str, bytes],
    time_cost: int = DEFAULT_TIME_COST,
    memory_cost: int = DEFAULT_MEMORY_COST,
    parallelism: int = DEFAULT_PARALLELISM,
) -> GeneratedKey:
    """Mint a new locked key pair in the vaultshare format.

    Identity providers own key generation; this helper exists so they (and
    tests) can produce keys the sharing flows understand.
    """
    key = UnlockedKey.generate()
    locked = key.lock(passphrase, time_cost, memory_cost, parallelism)
    return GeneratedKey(key.key_id, locked, key.public_key.armored())


def unlock_private_key(armored_key: str, passphrase: Union[str, bytes]) -> UnlockedKey:
    """Remove the passphrase lock of an armored private key.

    Raises LockedKeyError for a wrong passphrase or a malformed key.
    """
    try:
        raw = unarmor(armored_key, PRIVATE_KEY)
        if raw[:4] != KEY_MAGIC:
            raise ValueError("Invalid private key format (magic mismatch)")
        if len(raw) < 5 or raw[4] != VERSION:
            raise ValueError("Unsupported private key version")
        offset = 5
        time_cost, memory_cost, parallelism = unpack_kdf_params(raw[offset : offset + PARAMS_SIZE])
        offset += PARAMS_SIZE
        salt_len = raw[offset]
        offset += 1
        salt = raw[offset : offset + salt_len]
        offset += salt_len
        nonce = raw[offset : offset + NONCE_SIZE]
        offset += NONCE_SIZE
        if len(salt) != salt_len or len(nonce) != NONCE_SIZE:
            raise ValueError("truncated private key header")
        header, ct = raw[:offset], raw[offset:]
    except (ValueError, IndexError) as e:
        raise LockedKeyError(f"cannot parse private key: {e}") from e

    kek = derive_passphrase_key(passphrase, salt, time_cost, memory_cost, parallelism)
    try:
        secret = AESGCM(kek).decrypt(nonce, ct, header)
    except InvalidTag as e:
        raise LockedKeyError("wrong passphrase for private key") from e

    return UnlockedKey(
        x25519.X25519PrivateKey.from_private_bytes(secret[:RAW_KEY_SIZE]),
        ed25519.Ed25519PrivateKey.from_private_bytes(secret[RAW_KEY_SIZE:]),
    )


def unlock_address_keys(address: Address, user_data: UserData) -> List[UnlockedKey]:
    """Unlock every active key of ``address`` whose passphrase is known.

    Raises LockedKeyError when none of them can be unlocked.
    """
    unlocked = []
    for address_key in address.keys:
        if not address_key.active:
            continue
        passphrase = user_data.passphrases.get(address_key.key_id)
        if passphrase is None:
            continue
        try:
            unlocked.append(unlock_private_key(address_key.private_key, passphrase))
        except LockedKeyError:
            logger.debug("Could not unlock key %s of address %s", address_key.key_id, address.address_id)
    if not unlocked:
        raise LockedKeyError(f"no key of address {address.address_id} could be unlocked")
    return unlocked


def unlock_user_key(user_data: UserData) -> UnlockedKey:
    """Unlock the first user key of the active user."""
    if not user_data.user.keys:
        raise MissingUserKeyError(user_data.user.user_id)
    user_key = user_data.user.keys[0]
    passphrase = user_data.passphrases.get(user_key.key_id)
    if passphrase is None:
        raise MissingPassphraseError(user_key.key_id)
    return unlock_private_key(user_key.private_key, passphrase)


def _as_public_key(key: Union[str, PublicKey]) -> PublicKey:
    return key if isinstance(key, PublicKey) else PublicKey.from_armored(key)


def _parse_verification_keys(keys: Iterable[Union[str, PublicKey]]) -> List[PublicKey]:
    parsed = []
    for key in keys:
        try:
            parsed.append(_as_public_key(key))
        except ValueError:
            logger.debug("Skipping unparseable verification key")
    return parsed


# ----------------------------------------------------------------------
# Signatures
# ----------------------------------------------------------------------


def _signing_input(data: bytes, context: ContextLike) -> bytes:
    ctx = context.encoded if context is not None else b""
    return _SIGNATURE_PREFIX + struct.pack(">H", len(ctx)) + ctx + data


def _verify_any(
    signature: bytes,
    signer_key_id: bytes,
    data: bytes,
    verification_keys: Sequence[PublicKey],
    context: ContextLike,
) -> None:
    signed = _signing_input(data, context)
    # try the key the signer named first, then the rest
    ordered = sorted(verification_keys, key=lambda k: k.raw_key_id != signer_key_id)
    for key in ordered:
        try:
            key.verification_key.verify(signature, signed)
            return
        except InvalidSignature:
            continue
    raise VerificationFailedError("no verification key validates the signature")


def sign_detached(signing_key: UnlockedKey, plain_data: bytes, context: ContextLike = None) -> bytes:
    """Return a binary detached signature over ``plain_data`` bound to ``context``."""
    try:
        signature = signing_key.sign(_signing_input(plain_data, context))
    except (ValueError, TypeError) as e:
        raise EncryptionFailedError(f"signing failed: {e}") from e
    return SIGNATURE_MAGIC + struct.pack("B", VERSION) + signing_key.public_key.raw_key_id + signature


def verify_detached(
    signature: bytes,
    plain_data: bytes,
    verification_keys: Iterable[Union[str, PublicKey]],
    context: ContextLike = None,
) -> None:
    """Raise VerificationFailedError unless one key validates ``signature``."""
    if (
        len(signature) != 5 + KEY_ID_SIZE + SIGNATURE_SIZE
        or signature[:4] != SIGNATURE_MAGIC
        or signature[4] != VERSION
    ):
        raise VerificationFailedError("malformed detached signature")
    signer_key_id = signature[5 : 5 + KEY_ID_SIZE]
    _verify_any(
        signature[5 + KEY_ID_SIZE :],
        signer_key_id,
        plain_data,
        _parse_verification_keys(verification_keys),
        context,
    )


def make_unsigned_signature_for_vault_sharing(email: str, key_material: bytes) -> bytes:
    """Payload of the new-user commitment: the invited email followed by the key."""
    return email.encode("utf-8") + key_material


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------


def _message_key(shared: bytes, ephemeral_raw: bytes, recipient_raw: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=ephemeral_raw + recipient_raw,
        info=_MESSAGE_INFO,
    )
    return hkdf.derive(shared)


def encrypt(
    public_key: Union[str, PublicKey],
    clear_data: bytes,
    signer_key: UnlockedKey,
    context: ContextLike = None,
) -> bytes:
    """Sign ``clear_data`` with ``signer_key`` and encrypt both to ``public_key``.

    Returns the binary message. Raises EncryptionFailedError on any failure.
    """
    try:
        recipient = _as_public_key(public_key)
        signature = signer_key.sign(_signing_input(clear_data, context))

        ephemeral = x25519.X25519PrivateKey.generate()
        ephemeral_raw = ephemeral.public_key().public_bytes_raw()
        recipient_raw = recipient.encryption_key.public_bytes_raw()
        shared = ephemeral.exchange(recipient.encryption_key)
        nonce = os.urandom(NONCE_SIZE)

        header = bytearray()
        header += MESSAGE_MAGIC
        header += struct.pack("B", VERSION)
        header += struct.pack("B", ALG_ID_X25519_AESGCM)
        header += recipient.raw_key_id
        header += ephemeral_raw
        header += nonce

        inner = signer_key.public_key.raw_key_id + signature + clear_data
        aead = AESGCM(_message_key(shared, ephemeral_raw, recipient_raw))
        return bytes(header) + aead.encrypt(nonce, inner, bytes(header))
    except (ValueError, TypeError) as e:
        raise EncryptionFailedError(f"encryption failed: {e}") from e


def _open_message(raw: bytes, decryption_keys: Sequence[UnlockedKey]) -> bytes:
    if len(raw) < _MESSAGE_HEADER_SIZE or raw[:4] != MESSAGE_MAGIC:
        raise DecryptionFailedError("Invalid message format (magic mismatch)")
    if raw[4] != VERSION:
        raise DecryptionFailedError("Unsupported message version")
    if raw[5] != ALG_ID_X25519_AESGCM:
        raise DecryptionFailedError("Unsupported message algorithm")

    header = raw[:_MESSAGE_HEADER_SIZE]
    recipient_key_id = raw[6 : 6 + KEY_ID_SIZE]
    ephemeral_raw = raw[6 + KEY_ID_SIZE : 6 + KEY_ID_SIZE + RAW_KEY_SIZE]
    nonce = raw[_MESSAGE_HEADER_SIZE - NONCE_SIZE : _MESSAGE_HEADER_SIZE]
    ct = raw[_MESSAGE_HEADER_SIZE:]

    try:
        ephemeral = x25519.X25519PublicKey.from_public_bytes(ephemeral_raw)
    except ValueError as e:
        raise DecryptionFailedError("invalid ephemeral key") from e

    ordered = sorted(decryption_keys, key=lambda k: k.public_key.raw_key_id != recipient_key_id)
    for key in ordered:
        try:
            shared = key.exchange(ephemeral)
            recipient_raw = key.public_key.encryption_key.public_bytes_raw()
            aead = AESGCM(_message_key(shared, ephemeral_raw, recipient_raw))
            return aead.decrypt(nonce, ct, header)
        except (InvalidTag, ValueError):
            continue
    raise DecryptionFailedError("no decryption key opens the message")


def decrypt_and_verify(
    message: Union[str, bytes],
    decryption_keys: Sequence[UnlockedKey],
    verification_keys: Iterable[Union[str, PublicKey]],
    context: ContextLike = None,
) -> bytes:
    """Decrypt an armored (or binary) message and verify its embedded signature.

    Both steps must succeed: a message that decrypts but does not verify under
    ``context`` raises VerificationFailedError and no plaintext is returned.
    """
    if isinstance(message, str):
        try:
            raw = unarmor_message(message)
        except ValueError as e:
            raise DecryptionFailedError(f"invalid armored message: {e}") from e
    else:
        raw = message

    inner = _open_message(raw, decryption_keys)
    if len(inner) < _INNER_PREFIX_SIZE:
        raise VerificationFailedError("message carries no signature")
    signer_key_id = inner[:KEY_ID_SIZE]
    signature = inner[KEY_ID_SIZE:_INNER_PREFIX_SIZE]
    content = inner[_INNER_PREFIX_SIZE:]

    _verify_any(signature, signer_key_id, content, _parse_verification_keys(verification_keys), context)
    return content


def encrypt_key_for_recipient(
    key: EncryptionKey,
    recipient_public_key: Union[str, PublicKey],
    signer_key: UnlockedKey,
    context: ContextLike = SignatureContext.EXISTING_USER_SHARING,
) -> WrappedKey:
    """Wrap ``key`` for a recipient, keeping its rotation."""
    message = encrypt(recipient_public_key, key.key_material, signer_key, context)
    return WrappedKey(rotation=key.rotation, key=b64e(message))


# ----------------------------------------------------------------------
# Symmetric
# ----------------------------------------------------------------------


def aead_encrypt(key: bytes, data: bytes, associated_data: Optional[bytes] = None) -> bytes:
    """AES-256-GCM; returns ``nonce || ciphertext``."""
    try:
        nonce = os.urandom(NONCE_SIZE)
        return nonce + AESGCM(key).encrypt(nonce, data, associated_data)
    except (ValueError, TypeError) as e:
        raise EncryptionFailedError(f"symmetric encryption failed: {e}") from e


def aead_decrypt(key: bytes, blob: bytes, associated_data: Optional[bytes] = None) -> bytes:
    if len(blob) < NONCE_SIZE:
        raise DecryptionFailedError("Ciphertext too short to contain nonce")
    try:
        return AESGCM(key).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], associated_data)
    except (InvalidTag, ValueError) as e:
        raise DecryptionFailedError("symmetric decryption failed") from e


def generate_symmetric_key() -> bytes:
    return os.urandom(32)
