"""
Solana ledger access used by the verifier and settler.

Every RPC or transport failure surfaces as NetworkError so callers can tell
an unreachable ledger apart from an invalid payment.
"""

from typing import Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.transaction import Transaction
import structlog

from .errors import NetworkError

logger = structlog.get_logger()

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"


def get_rpc_url(network: str, custom_url: Optional[str] = None) -> str:
    """Resolve the RPC endpoint for a network, preferring an explicit URL."""
    if custom_url:
        return custom_url
    return DEVNET_RPC_URL if network == "solana-devnet" else MAINNET_RPC_URL


class SolanaLedger:
    """Thin async wrapper over the Solana JSON-RPC API."""

    def __init__(self, rpc_url: str, client: Optional[AsyncClient] = None):
        self.rpc_url = rpc_url
        self.rpc_client = client or AsyncClient(rpc_url)

    async def close(self):
        """Close RPC client connection."""
        await self.rpc_client.close()

    async def current_time(self) -> int:
        """Unix time of the most recent confirmed block."""
        try:
            slot = (await self.rpc_client.get_slot(commitment=Confirmed)).value
            block_time = (await self.rpc_client.get_block_time(slot)).value
        except Exception as e:
            logger.error("Failed to fetch ledger time", rpc_url=self.rpc_url, error=str(e))
            raise NetworkError(f"Ledger time unavailable: {e}") from e

        if block_time is None:
            raise NetworkError(f"No block time for slot {slot}")
        return int(block_time)

    async def latest_blockhash(self) -> Hash:
        try:
            resp = await self.rpc_client.get_latest_blockhash(commitment=Confirmed)
        except Exception as e:
            logger.error("Failed to fetch blockhash", rpc_url=self.rpc_url, error=str(e))
            raise NetworkError(f"Blockhash unavailable: {e}") from e
        return resp.value.blockhash

    async def send_transaction(self, transaction: Transaction) -> str:
        """Submit a signed transaction and return its signature."""
        try:
            result = await self.rpc_client.send_transaction(
                transaction,
                opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed),
            )
        except Exception as e:
            logger.error("Transaction submission failed", rpc_url=self.rpc_url, error=str(e))
            raise NetworkError(f"Transaction submission failed: {e}") from e
        return str(result.value)
