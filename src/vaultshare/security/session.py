"""In-memory identity session holding the active user's UserData with auto-lock.

This is the default UserDataProvider. It keeps its own copy of a UserData and
an expiry timestamp. get_unwrapped_user_data() returns the data while the
session is unlocked and not expired; otherwise it raises SessionLockedError.
Key passphrases can be persisted to / restored from the OS keyring.
"""
from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Optional

from vaultshare.core.exceptions import SessionLockedError
from vaultshare.core.interfaces import UserDataProvider
from vaultshare.core.models import UserData

from .keystore import assess_keyring_backend, delete_passphrase, load_passphrases, save_passphrase

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
DEFAULT_KEYRING_SERVICE = "vaultshare"


def _all_key_ids(user_data: UserData):
    ids = [k.key_id for k in user_data.user.keys]
    for address in user_data.addresses:
        ids.extend(k.key_id for k in address.keys)
    return ids


def _own_copy(user_data: UserData) -> UserData:
    # lock() wipes passphrases; never wipe the caller's dict
    return replace(user_data, passphrases=dict(user_data.passphrases))


class UserSession(UserDataProvider):
    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, keyring_service: str = DEFAULT_KEYRING_SERVICE):
        self._user_data: Optional[UserData] = None
        self._expires_at: Optional[float] = None
        self.ttl_seconds = ttl_seconds
        self.keyring_service = keyring_service

    @classmethod
    def from_settings(cls, settings) -> "UserSession":
        return cls(ttl_seconds=settings.session_ttl, keyring_service=settings.keyring_service)

    def unlock(self, user_data: UserData, ttl_seconds: Optional[int] = None) -> None:
        """Unlock the session with the active user's data.

        Args:
            user_data: identity records plus key passphrases; the session keeps a copy
            ttl_seconds: time-to-live in seconds; defaults to the session TTL
        """
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._user_data = _own_copy(user_data)
        self._expires_at = time.time() + float(ttl)
        logger.debug("Session unlocked for user %s", user_data.user.user_id)

    def get_unwrapped_user_data(self) -> UserData:
        """Return the unlocked UserData or raise if locked/expired."""
        if self._user_data is None:
            raise SessionLockedError("Session is locked")
        if self._expires_at is not None and time.time() > self._expires_at:
            self.lock()
            raise SessionLockedError("Session expired and was locked")
        return self._user_data

    def update_user_data(self, user_data: UserData) -> None:
        """Swap in refreshed UserData (e.g. new addresses) without touching the TTL."""
        if self._user_data is None:
            raise SessionLockedError("Session is locked")
        self._user_data = _own_copy(user_data)

    def extend(self, extra_seconds: int) -> None:
        """Extend session TTL by extra_seconds if unlocked."""
        if self._user_data is None:
            raise SessionLockedError("Session is locked")
        self._expires_at = (self._expires_at or time.time()) + float(extra_seconds)

    def lock(self) -> None:
        """Drop the UserData and wipe the session's copy of its passphrases."""
        if self._user_data is not None:
            self._user_data.passphrases.clear()
        self._user_data = None
        self._expires_at = None

    def persist_passphrases(self, service: Optional[str] = None, force: bool = False) -> int:
        """Store every cached key passphrase in the OS keystore; returns how many.

        Refuses insecure keyring backends unless ``force`` is set.
        """
        service = service or self.keyring_service
        user_data = self.get_unwrapped_user_data()
        assessment = assess_keyring_backend()
        if not assessment.secure:
            if not force:
                raise RuntimeError(
                    f"refusing to persist key passphrases to keyring backend {assessment.backend}: "
                    f"{assessment.reason}; pass force=True to override"
                )
            logger.warning("Persisting key passphrases to insecure keyring backend %s", assessment.backend)
        for key_id, passphrase in user_data.passphrases.items():
            save_passphrase(service, key_id, passphrase)
        logger.info(
            "Persisted %d key passphrases to keyring backend %s (service %s, %s)",
            len(user_data.passphrases),
            assessment.backend,
            service,
            assessment.reason,
        )
        return len(user_data.passphrases)

    def unlock_from_keyring(
        self, user_data: UserData, service: Optional[str] = None, ttl_seconds: Optional[int] = None
    ) -> None:
        """Unlock with ``user_data`` whose passphrases are restored from the OS keystore.

        Raises SessionLockedError if the keystore holds none of its keys.
        """
        passphrases = load_passphrases(service or self.keyring_service, _all_key_ids(user_data))
        if not passphrases:
            raise SessionLockedError("No key passphrases found in OS keystore")
        merged = dict(user_data.passphrases)
        merged.update(passphrases)
        self.unlock(replace(user_data, passphrases=merged), ttl_seconds=ttl_seconds)

    def forget_passphrases(self, service: Optional[str] = None) -> None:
        """Remove the persisted passphrases of the session's keys."""
        for key_id in _all_key_ids(self.get_unwrapped_user_data()):
            delete_passphrase(service or self.keyring_service, key_id)
