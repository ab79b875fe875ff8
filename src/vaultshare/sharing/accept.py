"""
Invite acceptance.

Every key of an invite is verified against the inviter and decrypted with the
invitee's address keys, then re-encrypted to the invitee's own user key. One
failing key fails the whole acceptance: no partially verified access.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from vaultshare.core.exceptions import FailedToInviteError, InvalidAddressError, InvalidKeyError
from vaultshare.core.interfaces import (
    InviteRepository,
    PublicKeyLookup,
    SyncEventLoop,
    UpdateUserAddresses,
    UseCase,
    UserDataProvider,
)
from vaultshare.core.models import Address, Share, SignatureContext, UserData, UserInvite, WrappedKey, b64e
from vaultshare.security.armor import armor_message
from vaultshare.security.crypto import (
    UnlockedKey,
    decrypt_and_verify,
    encrypt,
    unlock_address_keys,
    unlock_user_key,
)

logger = logging.getLogger(__name__)


async def fetch_invited_address(
    user_invite: UserInvite, user_data: UserData, update_user_addresses: UpdateUserAddresses
) -> Address:
    """Address matching the invited email, refreshing the address list once if needed."""
    address = user_data.address(user_invite.invited_email)
    if address is not None:
        return address

    logger.debug("No local address for %s, refreshing addresses", user_invite.invited_email)
    refreshed = await update_user_addresses() or []
    wanted = user_invite.invited_email.strip().lower()
    address = next((a for a in refreshed if a.email.lower() == wanted), None)
    if address is None:
        raise InvalidAddressError(user_invite.invited_email)
    return address


def open_invite_key(
    key: WrappedKey, address_keys: List[UnlockedKey], inviter_public_keys: List[str]
) -> bytes:
    """Verify and decrypt one invite key; returns the clear key material."""
    message = armor_message(key.decoded())
    return decrypt_and_verify(
        message, address_keys, inviter_public_keys, SignatureContext.EXISTING_USER_SHARING
    )


class AcceptInvitation(UseCase):
    """Turn an invite's keys into keys the invitee can persist as their own."""

    def __init__(
        self,
        user_data_provider: UserDataProvider,
        public_key_lookup: PublicKeyLookup,
        update_user_addresses: UpdateUserAddresses,
    ):
        self.user_data_provider = user_data_provider
        self.public_key_lookup = public_key_lookup
        self.update_user_addresses = update_user_addresses

    async def execute(self, user_invite: UserInvite) -> List[WrappedKey]:
        logger.debug("Start accepting share invite for invitee email %s", user_invite.invited_email)
        try:
            keys = await self._reencrypt_keys(user_invite)
        except Exception:
            logger.exception("Failed to accept invite for %s", user_invite.invited_email)
            raise
        logger.debug("Finished encrypting %d keys", len(keys))
        return keys

    async def _reencrypt_keys(self, user_invite: UserInvite) -> List[WrappedKey]:
        user_data = self.user_data_provider.get_unwrapped_user_data()
        address = await fetch_invited_address(user_invite, user_data, self.update_user_addresses)
        address_keys = await asyncio.to_thread(unlock_address_keys, address, user_data)
        inviter_public_keys = await self.public_key_lookup.get_public_keys(user_invite.inviter_email)

        # all keys are opened before anything is re-encrypted
        opened = []
        for key in user_invite.keys:
            material = await asyncio.to_thread(open_invite_key, key, address_keys, inviter_public_keys)
            opened.append((key.rotation, material))

        user_key = await asyncio.to_thread(unlock_user_key, user_data)
        reencrypted = []
        for rotation, material in opened:
            message = await asyncio.to_thread(
                encrypt, user_key.public_key, material, user_key, SignatureContext.EXISTING_USER_SHARING
            )
            reencrypted.append(WrappedKey(rotation=rotation, key=b64e(message)))

        vault_data = user_invite.vault_data
        if vault_data is not None and not any(k.rotation == vault_data.content_key_rotation for k in reencrypted):
            raise InvalidKeyError(f"invite has no key for rotation {vault_data.content_key_rotation}")
        return reencrypted


class JoinShare(UseCase):
    """Accept an invite end to end: re-encrypt keys, submit them, drop the cached invite."""

    def __init__(
        self,
        accept_invitation: AcceptInvitation,
        invite_repository: InviteRepository,
        sync_event_loop: SyncEventLoop,
    ):
        self.accept_invitation = accept_invitation
        self.invite_repository = invite_repository
        self.sync_event_loop = sync_event_loop

    async def execute(self, user_invite: UserInvite) -> Share:
        keys = await self.accept_invitation(user_invite)
        share: Optional[Share] = await self.invite_repository.accept_invite(user_invite.invite_token, keys)
        if share is None:
            logger.error("Server refused acceptance of invite for %s", user_invite.invited_email)
            raise FailedToInviteError("invite acceptance was refused")
        await self.invite_repository.remove_cached_invite(user_invite.invite_token)
        self.sync_event_loop.force_sync()
        logger.info("Joined share %s", share.share_id)
        return share
