"""
Dash Core and Platform constants used by the funding engine.

Amounts are in duffs (1 DASH = 100_000_000 duffs).
"""

from __future__ import annotations

DUFFS_PER_DASH = 100_000_000

# Standard dust limit for P2PKH outputs in Dash Core
STANDARD_DUST_LIMIT = 546  # duffs

# Special transaction header: version 3 with a 16-bit type in the upper half
SPECIAL_TX_VERSION = 3
TRANSACTION_TYPE_ASSET_LOCK = 8
ASSET_LOCK_PAYLOAD_VERSION = 1

# Burn output locking script for the locked amount: OP_RETURN OP_0
ASSET_LOCK_BURN_SCRIPT = bytes([0x6A, 0x00])

# Minimum fee paid by a funding transaction
MIN_ASSET_LOCK_FEE = 3_000  # duffs
DEFAULT_FEE_PER_BYTE = 1  # duffs/byte

# Size estimates for P2PKH transactions (bytes)
P2PKH_INPUT_SIZE = 148
P2PKH_OUTPUT_SIZE = 34
TX_OVERHEAD_SIZE = 10

# An instant-lock proof is replaced by a chain-lock proof once the funding
# transaction is chain-locked with more than this many confirmations
CHAIN_LOCK_UPGRADE_CONFIRMATIONS = 8

# Polling interval while waiting for a finality proof (seconds)
PROOF_POLL_INTERVAL = 0.2

SIGHASH_ALL = 1

# Identity key ids are assigned sequentially from zero; key 0 is the master key
MASTER_KEY_ID = 0
