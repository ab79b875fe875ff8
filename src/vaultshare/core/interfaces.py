"""
Collaborator contracts consumed by the sharing flows.

Persistence, transport and identity live outside this package; these abstract
classes are the seams where they plug in. Every repository call is awaited.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from .models import Address, EncryptionKey, Invitee, Share, ShareRole, TargetType, UserData, UserInvite, WrappedKey


class UseCase(ABC):
    """A single protocol operation; calling the instance runs ``execute``."""

    @abstractmethod
    async def execute(self, *args, **kwargs) -> Any:
        raise NotImplementedError

    async def __call__(self, *args, **kwargs) -> Any:
        return await self.execute(*args, **kwargs)


class KeyRepository(ABC):
    @abstractmethod
    async def fetch_latest_key(self, share_id: str, item_id: Optional[str] = None) -> Optional[EncryptionKey]:
        """Return the highest-rotation key of a share (or item), None if there is none."""

    @abstractmethod
    async def fetch_key_at_rotation(
        self, share_id: str, rotation: int, item_id: Optional[str] = None
    ) -> Optional[EncryptionKey]:
        """Return the key of one rotation, None if unknown."""


class PublicKeyLookup(ABC):
    @abstractmethod
    async def get_public_keys(self, email: str) -> List[str]:
        """Armored public keys of ``email`` in server preference order.

        An empty list means the address has no keys yet.
        """


class InviteRepository(ABC):
    @abstractmethod
    async def send_invite(self, share_id: str, invitee: Invitee, target_type: TargetType, role: ShareRole) -> bool:
        ...

    @abstractmethod
    async def promote_new_user_invite(self, share_id: str, invite_id: str, keys: List[WrappedKey]) -> bool:
        ...

    @abstractmethod
    async def get_pending_invites_for_user(self) -> List[UserInvite]:
        ...

    @abstractmethod
    async def accept_invite(self, invite_token: str, keys: List[WrappedKey]) -> Optional[Share]:
        ...

    @abstractmethod
    async def remove_cached_invite(self, invite_token: str) -> None:
        ...


class UserDataProvider(ABC):
    @abstractmethod
    def get_unwrapped_user_data(self) -> UserData:
        """Return the active user's data or raise SessionLockedError."""


class UpdateUserAddresses(UseCase):
    """Refresh the active user's addresses from the server."""

    @abstractmethod
    async def execute(self) -> Optional[List[Address]]:
        ...


class SyncEventLoop(ABC):
    @abstractmethod
    def force_sync(self) -> None:
        """Ask the sync engine to run soon. Fire and forget."""
