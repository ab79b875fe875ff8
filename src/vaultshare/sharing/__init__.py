"""Sharing use cases: invite, accept, promote and preview."""

from .invite import CreateInvite, SendShareInvite
from .accept import AcceptInvitation, JoinShare
from .promote import PromoteNewUserInvite
from .decode import DecodeShareVaultInformation

__all__ = [
    "CreateInvite",
    "SendShareInvite",
    "AcceptInvitation",
    "JoinShare",
    "PromoteNewUserInvite",
    "DecodeShareVaultInformation",
]
