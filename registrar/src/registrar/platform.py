"""
Dash Platform client interface.

The registrar only needs three calls from Platform; the concrete SDK binding
lives outside this package.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from coincurve import PrivateKey

from evocore.models import AssetLockProof, Identity


class PlatformError(Exception):
    """A Platform request failed."""


class ProtocolVersionError(PlatformError):
    """The node and client disagree on the protocol version; an identical retry may succeed."""


class PlatformClient(ABC):
    @abstractmethod
    async def fetch_identity_by_id(self, identity_id: str) -> Identity | None:
        """Return the identity if it exists on Platform."""

    @abstractmethod
    async def submit_identity_create(
        self, identity: Identity, proof: AssetLockProof, private_key: PrivateKey
    ) -> Identity:
        """Broadcast an identity create transition and wait for the result."""

    @abstractmethod
    async def get_core_chain_locked_height(self) -> int:
        """Core chain-locked height Platform currently agrees on."""
