"""
Dash Core RPC backend.
Uses non-wallet RPC methods only; the local node is the broadcast path.
"""

from __future__ import annotations

import asyncio
import os
import random
from typing import Any

import httpx
from loguru import logger

from evocore.constants import DUFFS_PER_DASH
from evowallet.backends.base import UTXO, CoreBackend, RawTransactionInfo

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0

# Timeout for scantxoutset calls
SCAN_RPC_TIMEOUT = 300.0

# Bitcoin-derived nodes allow only one scantxoutset at a time
SCAN_MAX_RETRIES = 10
SCAN_BASE_DELAY = 0.5

# WARNING: Enabling this will log addresses to the log
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


class DashCoreBackend(CoreBackend):
    """
    Core-node backend using Dash Core JSON-RPC.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:19998",
        rpc_user: str = "dashrpc",
        rpc_password: str = "password",
        scan_timeout: float = SCAN_RPC_TIMEOUT,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.rpc_user = rpc_user
        self.scan_timeout = scan_timeout
        self.client = httpx.AsyncClient(timeout=DEFAULT_RPC_TIMEOUT, auth=(rpc_user, rpc_password))
        self._scan_client = httpx.AsyncClient(timeout=scan_timeout, auth=(rpc_user, rpc_password))
        self._request_id = 0

    async def _rpc_call(
        self,
        method: str,
        params: list | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> Any:
        """
        Make an RPC call to Dash Core.

        Raises:
            ValueError: On RPC errors
            httpx.HTTPError: On connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "1.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        use_client = client or self.client

        try:
            response = await use_client.post(self.rpc_url, json=payload)
            data = response.json()

            if "error" in data and data["error"]:
                error_info = data["error"]
                error_code = error_info.get("code", "unknown")
                error_msg = error_info.get("message", str(error_info))
                raise ValueError(f"RPC error {error_code}: {error_msg}")

            response.raise_for_status()
            return data.get("result")

        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise

    async def _scantxoutset_with_retry(self, descriptors: list[str]) -> dict[str, Any] | None:
        for attempt in range(SCAN_MAX_RETRIES):
            try:
                return await self._rpc_call(
                    "scantxoutset", ["start", descriptors], client=self._scan_client
                )
            except ValueError as e:
                if "Scan already in progress" not in str(e) or attempt == SCAN_MAX_RETRIES - 1:
                    raise
                delay = SCAN_BASE_DELAY * (2**attempt) + random.uniform(0, 0.5)
                logger.debug(
                    f"Scan in progress, retrying in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{SCAN_MAX_RETRIES})"
                )
                await asyncio.sleep(delay)
        return None

    async def get_utxos(self, addresses: list[str]) -> list[UTXO]:
        utxos: list[UTXO] = []
        if not addresses:
            return utxos

        batch_size = 100
        for i in range(0, len(addresses), batch_size):
            chunk = addresses[i : i + batch_size]
            if SENSITIVE_LOGGING:
                logger.debug(f"Scanning addresses batch {i // batch_size + 1}: {chunk}")

            result = await self._scantxoutset_with_retry([f"addr({addr})" for addr in chunk])
            if not result or "unspents" not in result:
                continue

            for utxo_data in result["unspents"]:
                desc = utxo_data.get("desc", "").split("#")[0]
                address = ""
                if desc.startswith("addr(") and desc.endswith(")"):
                    address = desc[5:-1]
                elif desc:
                    logger.warning(f"Failed to parse address from descriptor: '{desc}'")

                utxos.append(
                    UTXO(
                        txid=utxo_data["txid"],
                        vout=utxo_data["vout"],
                        value=round(utxo_data["amount"] * DUFFS_PER_DASH),
                        address=address,
                        script_pubkey=utxo_data.get("scriptPubKey", ""),
                        height=utxo_data.get("height"),
                    )
                )

            logger.debug(f"Scanned {len(chunk)} addresses, found {len(result['unspents'])} UTXOs")

        return utxos

    async def get_raw_transaction_info(self, txid: str) -> RawTransactionInfo:
        tx_data = await self._rpc_call("getrawtransaction", [txid, True])
        if not tx_data:
            raise ValueError(f"Transaction {txid} not found")

        return RawTransactionInfo(
            txid=txid,
            chainlock=bool(tx_data.get("chainlock", False)),
            instantlock=bool(tx_data.get("instantlock", False)),
            height=tx_data.get("height"),
            confirmations=tx_data.get("confirmations"),
            hex=tx_data.get("hex", ""),
        )

    async def send_raw_transaction(self, tx_hex: str) -> str:
        try:
            txid = await self._rpc_call("sendrawtransaction", [tx_hex])
            logger.info(f"Broadcast transaction: {txid}")
            return txid
        except Exception as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise ValueError(f"Broadcast failed: {e}") from e

    async def get_instant_locks(self, txids: list[str]) -> dict[str, bytes]:
        if not txids:
            return {}
        result = await self._rpc_call("getislocks", [txids])
        locks: dict[str, bytes] = {}
        for txid, entry in zip(txids, result or []):
            # The node returns the string "None" for transactions without a lock
            if isinstance(entry, dict) and entry.get("hex"):
                locks[txid] = bytes.fromhex(entry["hex"])
        return locks

    async def close(self) -> None:
        await self.client.aclose()
        await self._scan_client.aclose()
