"""
Registrar exceptions.

Wallet-level failures (InsufficientFundsError, UtxoReservedError) are raised
by evowallet and re-exported here so callers can catch everything from one
module.
"""

from __future__ import annotations

from evowallet.wallet.models import InsufficientFundsError, UtxoReservedError


class RegistrarError(Exception):
    pass


class AssetLockValidationError(RegistrarError):
    pass


class IdentityAlreadyExistsError(RegistrarError):
    def __init__(self, identity_id: str):
        super().__init__(f"Identity with id {identity_id} already exists")
        self.identity_id = identity_id


class BroadcastError(RegistrarError):
    pass


class FinalityTimeoutError(RegistrarError):
    def __init__(self, txid: str, timeout: float):
        super().__init__(f"No finality proof for asset lock {txid} after {timeout:.0f}s")
        self.txid = txid
        self.timeout = timeout


class RegistrationError(RegistrarError):
    """Identity submission failed; the identity was marked as failed."""

    def __init__(self, identity_id: str, transition: str, cause: Exception):
        super().__init__(
            f"Error registering identity {identity_id}: {cause}, transition: {transition}"
        )
        self.identity_id = identity_id
        self.transition = transition
        self.cause = cause


class NodeUnavailableError(RegistrarError):
    pass


__all__ = [
    "AssetLockValidationError",
    "BroadcastError",
    "FinalityTimeoutError",
    "IdentityAlreadyExistsError",
    "InsufficientFundsError",
    "NodeUnavailableError",
    "RegistrarError",
    "RegistrationError",
    "UtxoReservedError",
]
