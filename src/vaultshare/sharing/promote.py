"""
New user invite promotion.

Once someone invited by email alone has registered and owns keys, the inviter
encrypts the share key to their new public key and hands it to the server,
turning the pending new-user invite into a regular keyed invite.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from vaultshare.core.exceptions import FailedToInviteError, NoPublicKeyAssociatedWithEmailError
from vaultshare.core.interfaces import InviteRepository, PublicKeyLookup, UseCase, UserDataProvider
from vaultshare.core.key_manager import KeyManager
from vaultshare.core.models import Share, SignatureContext, TargetType
from vaultshare.security.crypto import encrypt_key_for_recipient

from .invite import address_signing_key, resolve_share_key

logger = logging.getLogger(__name__)


class PromoteNewUserInvite(UseCase):
    def __init__(
        self,
        user_data_provider: UserDataProvider,
        key_manager: KeyManager,
        public_key_lookup: PublicKeyLookup,
        invite_repository: InviteRepository,
    ):
        self.user_data_provider = user_data_provider
        self.key_manager = key_manager
        self.public_key_lookup = public_key_lookup
        self.invite_repository = invite_repository

    async def execute(
        self,
        share: Share,
        invite_id: str,
        email: str,
        item_id: Optional[str] = None,
        key_rotation: Optional[int] = None,
    ) -> None:
        """Promote invite ``invite_id`` of ``email``.

        ``item_id`` targets an item of a vault share; ``key_rotation`` pins the
        rotation to share instead of the latest one. A refusal from the server
        (invite cancelled or expired) is final and raises FailedToInviteError.
        """
        logger.debug("Promoting new user invite %s for share %s", invite_id, share.share_id)
        public_keys = await self.public_key_lookup.get_public_keys(email)
        if not public_keys:
            raise NoPublicKeyAssociatedWithEmailError(email)

        # without an item id the share key is the one to hand over
        target_type = TargetType.ITEM if item_id is not None else TargetType.VAULT
        key = await resolve_share_key(self.key_manager, share, target_type, item_id, key_rotation)

        user_data = self.user_data_provider.get_unwrapped_user_data()
        signer = await address_signing_key(user_data, share.address_id)
        wrapped = await asyncio.to_thread(
            encrypt_key_for_recipient, key, public_keys[0], signer, SignatureContext.EXISTING_USER_SHARING
        )

        try:
            promoted = await self.invite_repository.promote_new_user_invite(share.share_id, invite_id, [wrapped])
        except Exception:
            logger.exception("Failed to promote new user invite %s for share %s", invite_id, share.share_id)
            raise
        if not promoted:
            logger.error("Server refused promotion of invite %s for share %s", invite_id, share.share_id)
            raise FailedToInviteError(f"promotion of invite {invite_id} was refused")
        logger.info("Promoted new user invite %s for share %s at rotation %d", invite_id, share.share_id, key.rotation)
