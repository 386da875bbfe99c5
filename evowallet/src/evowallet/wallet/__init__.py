from evowallet.wallet.models import (
    InsufficientFundsError,
    UnusedAssetLock,
    UtxoReservedError,
    Wallet,
    WalletError,
    WalletUtxo,
)

__all__ = [
    "InsufficientFundsError",
    "UnusedAssetLock",
    "UtxoReservedError",
    "Wallet",
    "WalletError",
    "WalletUtxo",
]
