"""Security helpers: key locking, armoring and sharing primitives for vaultshare.

This package provides:
- Argon2id-based passphrase locking of private keys
- X25519 + HKDF + AES-GCM messages with embedded Ed25519 signatures
- Detached signatures bound to a signing context
- An in-memory identity session with optional keyring-backed passphrases
"""

from .kdf import generate_salt, derive_passphrase_key
from .armor import armor_message, unarmor_message
from .crypto import (
    PublicKey,
    UnlockedKey,
    generate_private_key,
    unlock_private_key,
    unlock_address_keys,
    unlock_user_key,
    encrypt,
    encrypt_key_for_recipient,
    decrypt_and_verify,
    sign_detached,
    verify_detached,
    make_unsigned_signature_for_vault_sharing,
    aead_encrypt,
    aead_decrypt,
)
from .keystore import save_passphrase, load_passphrase, delete_passphrase
from .session import UserSession

__all__ = [
    "generate_salt",
    "derive_passphrase_key",
    "armor_message",
    "unarmor_message",
    "PublicKey",
    "UnlockedKey",
    "generate_private_key",
    "unlock_private_key",
    "unlock_address_keys",
    "unlock_user_key",
    "encrypt",
    "encrypt_key_for_recipient",
    "decrypt_and_verify",
    "sign_detached",
    "verify_detached",
    "make_unsigned_signature_for_vault_sharing",
    "aead_encrypt",
    "aead_decrypt",
    "save_passphrase",
    "load_passphrase",
    "delete_passphrase",
    "UserSession",
]
