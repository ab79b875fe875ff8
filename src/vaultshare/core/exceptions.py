"""
Exceptions for the vaultshare sharing protocol
Everything derives from VaultShareError so callers have one general catcher.
Messages name ids and emails only, never key material.
"""
from typing import Optional


class VaultShareError(Exception):
    # general container for errors
    pass


# ----------------------------------------------------------------------
# Crypto
# ----------------------------------------------------------------------


class CryptoError(VaultShareError):
    # raised when a cryptographic operation fails; never retried
    pass


class LockedKeyError(CryptoError):
    # raised when no private key could be unlocked with the known passphrases
    pass


class DecryptionFailedError(CryptoError):
    # raised when no decryption key opens a message
    pass


class VerificationFailedError(CryptoError):
    # raised when no verification key validates a signature under its context
    pass


class EncryptionFailedError(CryptoError):
    # raised when the underlying encryption or signing primitive fails
    pass


class MissingUserKeyError(CryptoError):
    # raised when the active user has no user key
    def __init__(self, user_id: str):
        super().__init__(f"user {user_id} has no user key")
        self.user_id = user_id


class MissingPassphraseError(CryptoError):
    # raised when no passphrase is cached for a key
    def __init__(self, key_id: str):
        super().__init__(f"no passphrase for key {key_id}")
        self.key_id = key_id


class AddressNotFoundError(CryptoError):
    # raised when the address owning a share is unknown to the user
    def __init__(self, address_id: str):
        super().__init__(f"address {address_id} not found")
        self.address_id = address_id


# ----------------------------------------------------------------------
# Sharing
# ----------------------------------------------------------------------


class SharingError(VaultShareError):
    # user-facing sharing failures
    pass


class InvalidAddressError(SharingError):
    # raised when the invited email matches none of the user's addresses
    def __init__(self, email: str):
        super().__init__(f"no address for invited email {email}")
        self.email = email


class NoPublicKeyAssociatedWithEmailError(SharingError):
    # raised when an email has no public key yet (drives the new-user flow)
    def __init__(self, email: str):
        super().__init__(f"no public key associated with {email}")
        self.email = email


class IncompleteInformationError(SharingError):
    # raised when sharing input is missing required fields
    pass


class FailedToInviteError(SharingError):
    # raised when the server rejects an invite or a promotion
    pass


class CannotDecodeError(SharingError):
    # raised when a wrapped key or vault content is not valid base64
    pass


class InvalidKeyError(SharingError):
    # raised when an invite carries no key for the expected rotation
    pass


class StaleShareKeyError(SharingError):
    # raised when the share key rotated while invites were being built
    def __init__(self, share_id: str, rotation: int):
        super().__init__(f"share {share_id} key rotation {rotation} is stale")
        self.share_id = share_id
        self.rotation = rotation


# ----------------------------------------------------------------------
# Keys and session
# ----------------------------------------------------------------------


class KeysNotFoundError(VaultShareError):
    # raised when a share or item has no key, usually because access was revoked
    def __init__(self, share_id: str, item_id: Optional[str] = None):
        target = f"share {share_id}" if item_id is None else f"item {item_id} of share {share_id}"
        super().__init__(f"no key found for {target}")
        self.share_id = share_id
        self.item_id = item_id


class SessionLockedError(VaultShareError):
    # raised when the identity session is locked or expired
    pass
