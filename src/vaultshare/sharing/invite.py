"""
Invite construction and sending.

Recipients that already have a public key get the share key encrypted to them
and signed by the owning address. Recipients without keys ("new users") get a
signed commitment over ``email || key`` that is promoted later.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from vaultshare.core.exceptions import (
    AddressNotFoundError,
    FailedToInviteError,
    IncompleteInformationError,
    StaleShareKeyError,
)
from vaultshare.core.interfaces import InviteRepository, SyncEventLoop, UseCase, UserDataProvider
from vaultshare.core.key_manager import KeyManager
from vaultshare.core.models import (
    EncryptionKey,
    ExistingInvitee,
    Invitee,
    NewInvitee,
    Share,
    SharingInfo,
    SignatureContext,
    TargetType,
    UserData,
    b64e,
)
from vaultshare.security.crypto import (
    UnlockedKey,
    encrypt_key_for_recipient,
    make_unsigned_signature_for_vault_sharing,
    sign_detached,
    unlock_address_keys,
)

logger = logging.getLogger(__name__)


async def address_signing_key(user_data: UserData, address_id: str) -> UnlockedKey:
    """First unlockable key of the address that owns a share.

    Unlocking runs Argon2id, so it happens on a worker thread.
    """
    address = user_data.address_by_id(address_id)
    if address is None:
        raise AddressNotFoundError(address_id)
    keys = await asyncio.to_thread(unlock_address_keys, address, user_data)
    return keys[0]


def key_item_id(share: Share, target_type: TargetType, item_id: Optional[str]) -> Optional[str]:
    """Item id to look the key up under, None when the share key is the one to use.

    Vault invites carry the share key. Item invites carry the item key when the
    item lives in a vault share, and the share key when the share is the item's
    own share.
    """
    if target_type == TargetType.VAULT:
        return None
    if item_id is None:
        raise IncompleteInformationError("item invite without item id")
    if share.target_type == TargetType.VAULT:
        return item_id
    return None


async def resolve_share_key(
    key_manager: KeyManager,
    share: Share,
    target_type: TargetType,
    item_id: Optional[str],
    key_rotation: Optional[int] = None,
) -> EncryptionKey:
    """Pick the key an invite must carry; ``key_rotation`` pins a rotation instead of the latest."""
    lookup_item = key_item_id(share, target_type, item_id)
    if key_rotation is not None:
        return await key_manager.get_key_at_rotation(share.share_id, key_rotation, lookup_item)
    return await key_manager.get_latest_key(share.share_id, lookup_item)


class CreateInvite(UseCase):
    """Build the invitee payload for one recipient. Pure: nothing is sent."""

    async def execute(
        self,
        user_data: UserData,
        share: Share,
        email: str,
        key: EncryptionKey,
        recipient_public_keys: Optional[Sequence[str]] = None,
    ) -> Invitee:
        signer = await address_signing_key(user_data, share.address_id)

        if recipient_public_keys:
            # servers return keys in preference order; the first one wins
            wrapped = await asyncio.to_thread(
                encrypt_key_for_recipient,
                key,
                recipient_public_keys[0],
                signer,
                SignatureContext.EXISTING_USER_SHARING,
            )
            logger.debug("Wrapped key rotation %d of share %s for %s", key.rotation, share.share_id, email)
            return ExistingInvitee(email=email, keys=[wrapped])

        commitment = make_unsigned_signature_for_vault_sharing(email, key.key_material)
        signature = await asyncio.to_thread(sign_detached, signer, commitment, SignatureContext.NEW_USER_SHARING)
        logger.debug("Signed new user commitment of share %s for %s", share.share_id, email)
        return NewInvitee(email=email, signature=b64e(signature))


class SendShareInvite(UseCase):
    """Invite one or more recipients to a share and return the share."""

    def __init__(
        self,
        user_data_provider: UserDataProvider,
        key_manager: KeyManager,
        invite_repository: InviteRepository,
        sync_event_loop: SyncEventLoop,
        create_invite: Optional[CreateInvite] = None,
    ):
        self.user_data_provider = user_data_provider
        self.key_manager = key_manager
        self.invite_repository = invite_repository
        self.sync_event_loop = sync_event_loop
        self.create_invite = create_invite or CreateInvite()

    async def execute(self, infos: List[SharingInfo]) -> Share:
        if not infos:
            raise IncompleteInformationError("no recipients to invite")
        base = infos[0]
        share = base.share
        logger.debug("Inviting %d recipients to share %s", len(infos), share.share_id)

        user_data = self.user_data_provider.get_unwrapped_user_data()
        lookup_item = key_item_id(share, base.target_type, base.item_id)
        key = await resolve_share_key(self.key_manager, share, base.target_type, base.item_id)

        invitees = []
        for info in infos:
            invitee = await self.create_invite(
                user_data, share, info.email, key, info.receiver_public_keys
            )
            invitees.append((invitee, info))

        if await self.key_manager.is_stale(share.share_id, lookup_item):
            logger.warning("Key of share %s rotated while building invites", share.share_id)
            raise StaleShareKeyError(share.share_id, key.rotation)

        for invitee, info in invitees:
            try:
                invited = await self.invite_repository.send_invite(
                    share.share_id, invitee, info.target_type, info.role
                )
            except Exception:
                logger.exception("Failed to invite %s to share %s", info.email, share.share_id)
                raise
            if not invited:
                logger.error("Server refused invite of %s to share %s", info.email, share.share_id)
                raise FailedToInviteError(f"invite of {info.email} to share {share.share_id} was refused")
            logger.info("Invited %s to share %s", info.email, share.share_id)

        self.sync_event_loop.force_sync()
        return share
