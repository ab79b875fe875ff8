"""
Preview of an invited vault.

Lets the invitee read the vault name and description before accepting, using
the invite key of the rotation the vault content was encrypted with.
"""

from __future__ import annotations

import asyncio
import logging

from vaultshare.core.exceptions import InvalidKeyError
from vaultshare.core.interfaces import PublicKeyLookup, UpdateUserAddresses, UseCase, UserDataProvider
from vaultshare.core.models import UserInvite, VaultContent, b64d
from vaultshare.security.crypto import VAULT_CONTENT_AD, aead_decrypt, unlock_address_keys

from .accept import fetch_invited_address, open_invite_key

logger = logging.getLogger(__name__)


class DecodeShareVaultInformation(UseCase):
    def __init__(
        self,
        user_data_provider: UserDataProvider,
        public_key_lookup: PublicKeyLookup,
        update_user_addresses: UpdateUserAddresses,
    ):
        self.user_data_provider = user_data_provider
        self.public_key_lookup = public_key_lookup
        self.update_user_addresses = update_user_addresses

    async def execute(self, user_invite: UserInvite) -> VaultContent:
        logger.debug("Start decoding invitation share information for invitee %s", user_invite.invited_email)
        try:
            vault_data = user_invite.vault_data
            if vault_data is None:
                raise InvalidKeyError("invite carries no vault data")
            intermediate_key = user_invite.key_for_rotation(vault_data.content_key_rotation)
            if intermediate_key is None:
                raise InvalidKeyError(f"invite has no key for rotation {vault_data.content_key_rotation}")

            user_data = self.user_data_provider.get_unwrapped_user_data()
            address = await fetch_invited_address(user_invite, user_data, self.update_user_addresses)
            address_keys = await asyncio.to_thread(unlock_address_keys, address, user_data)
            inviter_public_keys = await self.public_key_lookup.get_public_keys(user_invite.inviter_email)

            vault_key = await asyncio.to_thread(open_invite_key, intermediate_key, address_keys, inviter_public_keys)
            content = await asyncio.to_thread(aead_decrypt, vault_key, b64d(vault_data.content), VAULT_CONTENT_AD)
            vault_content = VaultContent.from_bytes(content)
        except Exception:
            logger.exception("Failed to decode vault information for %s", user_invite.invited_email)
            raise
        logger.debug("Finished decoding vault content")
        return vault_content
