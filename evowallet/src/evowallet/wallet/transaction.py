"""
Asset lock transaction serialization and P2PKH signing.

An asset lock is a DIP2 special transaction (version 3, type 8). Its burn
output is an OP_RETURN carrying the locked amount; the extra payload lists
the credit outputs that Platform will credit to the new identity.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from coincurve import PrivateKey

from evocore.constants import (
    ASSET_LOCK_BURN_SCRIPT,
    ASSET_LOCK_PAYLOAD_VERSION,
    MIN_ASSET_LOCK_FEE,
    P2PKH_INPUT_SIZE,
    P2PKH_OUTPUT_SIZE,
    SIGHASH_ALL,
    SPECIAL_TX_VERSION,
    TRANSACTION_TYPE_ASSET_LOCK,
    TX_OVERHEAD_SIZE,
)
from evocore.crypto import hash256
from evocore.models import OutPoint, TxOut, txid_of


class TransactionError(Exception):
    pass


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return int.from_bytes(data[offset : offset + 2], "little"), offset + 2
    if first == 0xFE:
        return int.from_bytes(data[offset : offset + 4], "little"), offset + 4
    return int.from_bytes(data[offset : offset + 8], "little"), offset + 8


@dataclass
class TxInput:
    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF

    @property
    def outpoint(self) -> OutPoint:
        return OutPoint(self.txid, self.vout)


@dataclass
class TxOutput:
    value: int
    script: bytes


def serialize_output(out: TxOutput) -> bytes:
    return struct.pack("<Q", out.value) + encode_varint(len(out.script)) + out.script


def _read_output(data: bytes, offset: int) -> tuple[TxOutput, int]:
    value = struct.unpack("<Q", data[offset : offset + 8])[0]
    offset += 8
    script_len, offset = read_varint(data, offset)
    script = data[offset : offset + script_len]
    return TxOutput(value, script), offset + script_len


@dataclass
class AssetLockPayload:
    credit_outputs: list[TxOutput]
    version: int = ASSET_LOCK_PAYLOAD_VERSION

    def serialize(self) -> bytes:
        result = bytes([self.version]) + encode_varint(len(self.credit_outputs))
        for out in self.credit_outputs:
            result += serialize_output(out)
        return result

    @classmethod
    def deserialize(cls, data: bytes) -> AssetLockPayload:
        try:
            version = data[0]
            count, offset = read_varint(data, 1)
            outputs = []
            for _ in range(count):
                out, offset = _read_output(data, offset)
                outputs.append(out)
        except (IndexError, struct.error) as e:
            raise TransactionError(f"Failed to parse asset lock payload: {e}") from e
        return cls(credit_outputs=outputs, version=version)


@dataclass
class Transaction:
    inputs: list[TxInput]
    outputs: list[TxOutput]
    version: int = SPECIAL_TX_VERSION
    tx_type: int = TRANSACTION_TYPE_ASSET_LOCK
    locktime: int = 0
    payload: bytes = b""

    def serialize(self) -> bytes:
        result = struct.pack("<HH", self.version, self.tx_type)

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += bytes.fromhex(inp.txid)[::-1]
            result += struct.pack("<I", inp.vout)
            result += encode_varint(len(inp.script_sig)) + inp.script_sig
            result += struct.pack("<I", inp.sequence)

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += serialize_output(out)

        result += struct.pack("<I", self.locktime)

        if self.version >= SPECIAL_TX_VERSION and self.tx_type != 0:
            result += encode_varint(len(self.payload)) + self.payload

        return result

    @property
    def txid(self) -> str:
        return txid_of(self.serialize())

    @property
    def asset_lock_payload(self) -> AssetLockPayload:
        if self.tx_type != TRANSACTION_TYPE_ASSET_LOCK:
            raise TransactionError(f"Not an asset lock transaction (type {self.tx_type})")
        return AssetLockPayload.deserialize(self.payload)

    @property
    def locked_amount(self) -> int:
        return sum(out.value for out in self.asset_lock_payload.credit_outputs)

    @classmethod
    def deserialize(cls, raw: bytes) -> Transaction:
        try:
            version, tx_type = struct.unpack("<HH", raw[0:4])
            offset = 4

            input_count, offset = read_varint(raw, offset)
            inputs: list[TxInput] = []
            for _ in range(input_count):
                txid = raw[offset : offset + 32][::-1].hex()
                offset += 32
                vout = struct.unpack("<I", raw[offset : offset + 4])[0]
                offset += 4
                script_len, offset = read_varint(raw, offset)
                script_sig = raw[offset : offset + script_len]
                offset += script_len
                sequence = struct.unpack("<I", raw[offset : offset + 4])[0]
                offset += 4
                inputs.append(TxInput(txid, vout, script_sig, sequence))

            output_count, offset = read_varint(raw, offset)
            outputs: list[TxOutput] = []
            for _ in range(output_count):
                out, offset = _read_output(raw, offset)
                outputs.append(out)

            locktime = struct.unpack("<I", raw[offset : offset + 4])[0]
            offset += 4

            payload = b""
            if version >= SPECIAL_TX_VERSION and tx_type != 0:
                payload_len, offset = read_varint(raw, offset)
                payload = raw[offset : offset + payload_len]

        except (IndexError, struct.error) as e:
            raise TransactionError(f"Failed to parse transaction: {e}") from e

        return cls(inputs, outputs, version, tx_type, locktime, payload)


def compute_legacy_sighash(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """
    Legacy (pre-segwit) SIGHASH_ALL digest.

    The input being signed carries the previous output's locking script,
    all other inputs carry an empty script. The special payload is part of
    the signed data.
    """
    if input_index >= len(tx.inputs):
        raise TransactionError("Input index out of range")

    inputs = [
        TxInput(
            inp.txid,
            inp.vout,
            script_code if i == input_index else b"",
            inp.sequence,
        )
        for i, inp in enumerate(tx.inputs)
    ]
    unsigned = Transaction(inputs, tx.outputs, tx.version, tx.tx_type, tx.locktime, tx.payload)
    return hash256(unsigned.serialize() + struct.pack("<I", sighash_type))


def sign_p2pkh_input(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    private_key: PrivateKey,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """DER signature over the legacy sighash with the sighash byte appended."""
    sighash = compute_legacy_sighash(tx, input_index, script_code, sighash_type)
    # sighash is already SHA256d; hasher=None skips hashing
    signature = private_key.sign(sighash, hasher=None)
    return signature + bytes([sighash_type])


def _push_data(data: bytes) -> bytes:
    if len(data) >= 0x4C:
        raise TransactionError(f"Push of {len(data)} bytes needs OP_PUSHDATA")
    return bytes([len(data)]) + data


def create_p2pkh_script_sig(signature: bytes, pubkey: bytes) -> bytes:
    return _push_data(signature) + _push_data(pubkey)


def estimate_asset_lock_size(num_inputs: int, has_change: bool, num_credit_outputs: int = 1) -> int:
    num_outputs = 2 if has_change else 1
    payload_size = 2 + num_credit_outputs * P2PKH_OUTPUT_SIZE
    return (
        TX_OVERHEAD_SIZE
        + num_inputs * P2PKH_INPUT_SIZE
        + num_outputs * P2PKH_OUTPUT_SIZE
        + 1
        + payload_size
    )


def estimate_asset_lock_fee(num_inputs: int, has_change: bool, fee_per_byte: int) -> int:
    size = estimate_asset_lock_size(num_inputs, has_change)
    return max(MIN_ASSET_LOCK_FEE, size * fee_per_byte)


@dataclass
class SpendableInput:
    """An outpoint the wallet can sign for."""

    outpoint: OutPoint
    output: TxOut
    private_key: PrivateKey


def build_asset_lock_transaction(
    inputs: list[SpendableInput],
    amount: int,
    credit_script: bytes,
    change_script: bytes | None,
    fee: int,
    dust_limit: int,
) -> Transaction:
    """
    Build and sign an asset lock transaction.

    Outputs: the OP_RETURN burn output carrying `amount`, then change back to
    the wallet when it is above the dust limit (otherwise it goes to fees).
    """
    if not inputs:
        raise TransactionError("Asset lock transaction needs at least one input")
    if amount <= 0:
        raise TransactionError("Asset lock amount must be positive")

    total_in = sum(inp.output.value for inp in inputs)
    change = total_in - amount - fee
    if change < 0:
        raise TransactionError(
            f"Inputs ({total_in}) do not cover amount ({amount}) plus fee ({fee})"
        )

    outputs = [TxOutput(amount, ASSET_LOCK_BURN_SCRIPT)]
    if change > dust_limit and change_script is not None:
        outputs.append(TxOutput(change, change_script))

    payload = AssetLockPayload(credit_outputs=[TxOutput(amount, credit_script)])
    tx = Transaction(
        inputs=[TxInput(inp.outpoint.txid, inp.outpoint.vout) for inp in inputs],
        outputs=outputs,
        payload=payload.serialize(),
    )

    script_sigs = []
    for index, inp in enumerate(inputs):
        pubkey = inp.private_key.public_key.format(compressed=True)
        signature = sign_p2pkh_input(tx, index, inp.output.script_pubkey, inp.private_key)
        script_sigs.append(create_p2pkh_script_sig(signature, pubkey))

    for tx_input, script_sig in zip(tx.inputs, script_sigs):
        tx_input.script_sig = script_sig

    return tx
