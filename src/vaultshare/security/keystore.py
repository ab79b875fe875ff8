"""OS keystore integration using keyring for optional key-passphrase caching.

Passphrases are stored base64-encoded under a (service, key_id) pair so an
identity provider can rebuild ``UserData.passphrases`` without prompting.
Do not assume keyring provides hardware-backed security on all platforms.
"""
import base64
import binascii
from typing import Dict, Iterable, NamedTuple, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError


def save_passphrase(service: str, key_id: str, passphrase: bytes) -> None:
    """Persist ``passphrase`` in the OS keystore under (service, key_id).

    The passphrase is base64-encoded before storage to keep it string-friendly.
    """
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")
    secret = base64.b64encode(passphrase).decode("ascii")
    keyring.set_password(service, key_id, secret)


class KeyringAssessment(NamedTuple):
    secure: bool
    backend: str
    reason: str


# backends that keep secrets on disk in the clear or keep nothing at all
_INSECURE_MARKERS = ("Plaintext", "Uncrypted", "Simple", "File", "Null", "Fail")
# platform stores known to encrypt at rest under the user's login
_PLATFORM_MARKERS = ("WinVault", "Windows", "Keychain", "SecretService", "KWallet")


def assess_keyring_backend() -> KeyringAssessment:
    """Judge whether the active keyring backend may hold key passphrases.

    Passphrases unlock private keys, so anything short of an encrypted platform
    store is reported as insecure, except backends keyring ranks as usable but
    this module does not recognise, which pass with a warning reason.
    """
    try:
        backend = keyring.get_keyring()
    except KeyringError as e:
        return KeyringAssessment(False, "unavailable", f"keyring backend could not be loaded: {e}")

    name = type(backend).__name__
    if any(marker in name for marker in _INSECURE_MARKERS):
        return KeyringAssessment(False, name, "backend does not encrypt stored passphrases")

    priority = getattr(backend, "priority", None)
    if priority is not None and priority <= 0:
        return KeyringAssessment(False, name, f"backend is not usable on this system (priority {priority})")

    if any(marker in name for marker in _PLATFORM_MARKERS):
        return KeyringAssessment(True, name, "platform credential store")
    return KeyringAssessment(True, name, "unrecognised backend, verify it encrypts at rest")


def load_passphrase(service: str, key_id: str) -> Optional[str]:
    """Load a cached passphrase; returns it decoded as text or None."""
    secret = keyring.get_password(service, key_id)
    if secret is None:
        return None
    try:
        return base64.b64decode(secret, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def load_passphrases(service: str, key_ids: Iterable[str]) -> Dict[str, str]:
    """Return the cached passphrases of ``key_ids``; missing ones are omitted."""
    found = {}
    for key_id in key_ids:
        passphrase = load_passphrase(service, key_id)
        if passphrase is not None:
            found[key_id] = passphrase
    return found


def delete_passphrase(service: str, key_id: str) -> None:
    """Remove a cached passphrase; a missing entry is not an error."""
    try:
        keyring.delete_password(service, key_id)
    except PasswordDeleteError:
        pass
