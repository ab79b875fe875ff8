"""
Shared fixtures: identities with real (cheaply locked) keys and in-memory collaborators.
"""

import asyncio
import importlib
import threading
import uuid
from contextlib import ExitStack
from unittest.mock import MagicMock, patch

import pytest

from vaultshare.core.interfaces import (
    InviteRepository,
    KeyRepository,
    PublicKeyLookup,
    SyncEventLoop,
    UpdateUserAddresses,
    UserDataProvider,
)
from vaultshare.core.key_manager import KeyManager
from vaultshare.core.models import (
    Address,
    AddressKey,
    EncryptionKey,
    Share,
    User,
    UserData,
    UserInvite,
    UserKey,
)
from vaultshare.security.crypto import generate_private_key, generate_symmetric_key
from vaultshare.sharing.invite import CreateInvite

# Argon2id minimums: keeps key unlocking fast in tests
FAST_KDF = {"time_cost": 1, "memory_cost": 8, "parallelism": 1}


# ==============================================================================
# Identities
# ==============================================================================


def make_user_data(email: str, with_user_key: bool = True) -> UserData:
    """UserData with one user key and one address key, both unlockable."""
    passphrases = {}
    user_keys = []
    if with_user_key:
        user_pass = f"user-pass-{email}"
        uk = generate_private_key(user_pass, **FAST_KDF)
        user_keys.append(UserKey(uk.key_id, uk.private_key, uk.public_key))
        passphrases[uk.key_id] = user_pass

    address_pass = f"address-pass-{email}"
    ak = generate_private_key(address_pass, **FAST_KDF)
    passphrases[ak.key_id] = address_pass
    address = Address(
        address_id=f"addr-{email}",
        email=email,
        keys=[AddressKey(ak.key_id, ak.private_key, ak.public_key, primary=True)],
    )
    return UserData(
        user=User(user_id=f"user-{email}", keys=user_keys),
        addresses=[address],
        passphrases=passphrases,
    )


class StaticUserDataProvider(UserDataProvider):
    def __init__(self, user_data: UserData):
        self.user_data = user_data

    def get_unwrapped_user_data(self) -> UserData:
        return self.user_data


# ==============================================================================
# Collaborators
# ==============================================================================


class InMemoryKeyRepository(KeyRepository):
    """Keys per (share_id, item_id); counts fetches and can simulate latency."""

    def __init__(self, delay: float = 0.0):
        self.keys = {}
        self.delay = delay
        self.latest_fetches = 0
        self.rotation_fetches = 0

    def add(self, key: EncryptionKey) -> EncryptionKey:
        self.keys.setdefault((key.share_id, key.item_id), {})[key.rotation] = key
        return key

    def rotate(self, share_id: str, item_id=None) -> EncryptionKey:
        known = self.keys.get((share_id, item_id), {})
        rotation = max(known) + 1 if known else 1
        return self.add(EncryptionKey(share_id, rotation, generate_symmetric_key(), item_id=item_id))

    async def fetch_latest_key(self, share_id, item_id=None):
        self.latest_fetches += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        known = self.keys.get((share_id, item_id))
        if not known:
            return None
        return known[max(known)]

    async def fetch_key_at_rotation(self, share_id, rotation, item_id=None):
        self.rotation_fetches += 1
        return self.keys.get((share_id, item_id), {}).get(rotation)


class DirectoryPublicKeyLookup(PublicKeyLookup):
    def __init__(self):
        self.directory = {}
        self.lookups = []

    def register(self, user_data: UserData):
        for address in user_data.addresses:
            self.directory[address.email] = [k.public_key for k in address.keys]

    async def get_public_keys(self, email):
        self.lookups.append(email)
        return list(self.directory.get(email, []))


class RecordingInviteRepository(InviteRepository):
    """Records what would hit the server; answers with configurable results."""

    def __init__(self):
        self.sent = []
        self.promoted = []
        self.accepted = []
        self.removed = []
        self.pending = []
        self.send_result = True
        self.promote_result = True
        self.accept_result = None

    async def send_invite(self, share_id, invitee, target_type, role):
        self.sent.append((share_id, invitee, target_type, role))
        return self.send_result

    async def promote_new_user_invite(self, share_id, invite_id, keys):
        self.promoted.append((share_id, invite_id, keys))
        return self.promote_result

    async def get_pending_invites_for_user(self):
        return list(self.pending)

    async def accept_invite(self, invite_token, keys):
        self.accepted.append((invite_token, keys))
        return self.accept_result

    async def remove_cached_invite(self, invite_token):
        self.removed.append(invite_token)
        self.pending = [i for i in self.pending if i.invite_token != invite_token]


class StaticUpdateUserAddresses(UpdateUserAddresses):
    def __init__(self, addresses=None):
        self.addresses = addresses
        self.calls = 0

    async def execute(self):
        self.calls += 1
        return self.addresses


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def alice():
    return make_user_data("alice@x.com")


@pytest.fixture
def bob():
    return make_user_data("bob@x.com")


@pytest.fixture
def key_repository():
    return InMemoryKeyRepository()


@pytest.fixture
def key_manager(key_repository):
    return KeyManager(key_repository)


@pytest.fixture
def public_key_lookup(alice, bob):
    lookup = DirectoryPublicKeyLookup()
    lookup.register(alice)
    lookup.register(bob)
    return lookup


@pytest.fixture
def invite_repository():
    return RecordingInviteRepository()


@pytest.fixture
def sync_event_loop():
    return MagicMock(spec=SyncEventLoop)


@pytest.fixture
def vault_share(alice):
    return Share(
        share_id=f"share-{uuid.uuid4().hex[:8]}",
        address_id=alice.addresses[0].address_id,
        vault_id="vault-1",
    )


@pytest.fixture
def user_data_factory():
    return make_user_data


@pytest.fixture
def provider_for():
    return StaticUserDataProvider


@pytest.fixture
def update_addresses_factory():
    return StaticUpdateUserAddresses


@pytest.fixture
def invite_factory(alice, vault_share):
    """Builds the UserInvite alice's vault share would deliver to ``invitee``."""

    async def build(invitee: UserData, keys, vault_data=None) -> UserInvite:
        recipient_keys = [k.public_key for k in invitee.addresses[0].keys]
        email = invitee.addresses[0].email
        wrapped = []
        for key in keys:
            created = await CreateInvite().execute(alice, vault_share, email, key, recipient_keys)
            wrapped.extend(created.keys)
        return UserInvite(
            invite_token=f"invite-{uuid.uuid4().hex[:8]}",
            invited_email=email,
            inviter_email=alice.addresses[0].email,
            keys=wrapped,
            vault_data=vault_data,
        )

    return build


# ==============================================================================
# Thread tracking
# ==============================================================================


def _recording(calls, target, original):
    def run(*args, **kwargs):
        calls.append((target.rsplit(".", 1)[1], threading.get_ident()))
        return original(*args, **kwargs)

    return run


@pytest.fixture
def crypto_threads():
    """Yields ``(watch, calls)``: ``watch`` patches dotted names so every call
    records ``(name, thread id)`` in ``calls`` before running the real function."""
    calls = []
    with ExitStack() as stack:

        def watch(*targets):
            for target in targets:
                module_name, attr = target.rsplit(".", 1)
                original = getattr(importlib.import_module(module_name), attr)
                stack.enter_context(patch(target, side_effect=_recording(calls, target, original)))

        yield watch, calls
