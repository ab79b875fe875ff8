"""
Data models for the sharing protocol: keys, invites, identity records
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .exceptions import CannotDecodeError


class TargetType(Enum):
    # What a share points at
    VAULT = "vault"
    ITEM = "item"


class ShareRole(Enum):
    # Permission granted to an invited member
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class SignatureContext(Enum):
    # Domain separation strings mixed into every sharing signature
    EXISTING_USER_SHARING = "vaultshare.existing-user-sharing.v1"
    NEW_USER_SHARING = "vaultshare.new-user-sharing.v1"

    @property
    def encoded(self) -> bytes:
        return self.value.encode("utf-8")


def b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64d(value: str) -> bytes:
    """Strict base64 decode; raises CannotDecodeError on malformed input."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CannotDecodeError(f"invalid base64 payload: {e}") from e


# ----------------------------------------------------------------------
# Keys
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class EncryptionKey:
    """One generation of a share or item symmetric key.

    Immutable: a new rotation supersedes a key, it never mutates it.
    """

    share_id: str
    rotation: int
    key_material: bytes = field(repr=False)
    item_id: Optional[str] = None
    passphrase: Optional[bytes] = field(default=None, repr=False)
    signature: Optional[bytes] = field(default=None, repr=False)

    def __post_init__(self):
        if self.rotation < 0:
            raise ValueError("key rotation must be non-negative")


@dataclass(frozen=True)
class WrappedKey:
    """Transport form of an EncryptionKey (base64 of the binary message)."""

    rotation: int
    key: str

    def decoded(self) -> bytes:
        return b64d(self.key)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "key_rotation": self.rotation}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WrappedKey":
        return cls(rotation=int(data["key_rotation"]), key=data["key"])


# ----------------------------------------------------------------------
# Invites
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ExistingInvitee:
    # recipient already has a public key: carries the wrapped key
    email: str
    keys: List[WrappedKey]


@dataclass(frozen=True)
class NewInvitee:
    # recipient has no key yet: carries a signed commitment (base64)
    email: str
    signature: str


Invitee = Union[ExistingInvitee, NewInvitee]


@dataclass(frozen=True)
class VaultContent:
    name: str
    description: str = ""
    display: Dict[str, Any] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        return json.dumps(
            {"name": self.name, "description": self.description, "display": self.display},
            ensure_ascii=False,
            sort_keys=True,
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "VaultContent":
        try:
            data = json.loads(raw.decode("utf-8"))
            return cls(
                name=data["name"],
                description=data.get("description", ""),
                display=data.get("display", {}),
            )
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise CannotDecodeError(f"invalid vault content: {e}") from e


@dataclass(frozen=True)
class VaultData:
    content: str
    content_key_rotation: int
    content_format_version: int = 1
    member_count: int = 0
    item_count: int = 0


@dataclass(frozen=True)
class UserInvite:
    """Pending invite for the current user, consumed once by acceptance."""

    invite_token: str
    invited_email: str
    inviter_email: str
    keys: List[WrappedKey]
    vault_data: Optional[VaultData] = None
    target_type: TargetType = TargetType.VAULT
    remind_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def key_for_rotation(self, rotation: int) -> Optional[WrappedKey]:
        return next((k for k in self.keys if k.rotation == rotation), None)


# ----------------------------------------------------------------------
# Shares
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Share:
    share_id: str
    address_id: str
    vault_id: str
    target_type: TargetType = TargetType.VAULT
    target_id: Optional[str] = None
    owner: bool = True
    share_role: ShareRole = ShareRole.ADMIN


@dataclass(frozen=True)
class SharingInfo:
    """One recipient of a send-invite request."""

    email: str
    role: ShareRole
    share: Share
    target_type: TargetType = TargetType.VAULT
    item_id: Optional[str] = None
    receiver_public_keys: Optional[List[str]] = None


# ----------------------------------------------------------------------
# Identity
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class UserKey:
    key_id: str
    private_key: str = field(repr=False)
    public_key: str
    active: bool = True


@dataclass(frozen=True)
class AddressKey:
    key_id: str
    private_key: str = field(repr=False)
    public_key: str
    primary: bool = False
    active: bool = True


@dataclass(frozen=True)
class Address:
    address_id: str
    email: str
    keys: List[AddressKey] = field(default_factory=list)


@dataclass(frozen=True)
class User:
    user_id: str
    keys: List[UserKey] = field(default_factory=list)


@dataclass
class UserData:
    """Unlocked identity of the active user, borrowed for one operation."""

    user: User
    addresses: List[Address] = field(default_factory=list)
    passphrases: Dict[str, str] = field(default_factory=dict, repr=False)

    def address(self, email: str) -> Optional[Address]:
        wanted = email.strip().lower()
        return next((a for a in self.addresses if a.email.lower() == wanted), None)

    def address_by_id(self, address_id: str) -> Optional[Address]:
        return next((a for a in self.addresses if a.address_id == address_id), None)
