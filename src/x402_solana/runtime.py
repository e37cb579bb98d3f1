"""
Process-scoped payment runtime.

Built once at startup and handed to the middleware, the facilitator routes
and the demo app. Nothing in the payment path looks up global state.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .config import Settings
from .errors import ConfigurationError
from .ledger import SolanaLedger, get_rpc_url
from .nonces import NonceCache
from .settler import SolanaSettler
from .signers import Signer, load_signer
from .verifier import SolanaVerifier

logger = structlog.get_logger()


@dataclass
class PaymentRuntime:
    settings: Settings
    ledger: SolanaLedger
    verifier: SolanaVerifier
    settler: SolanaSettler
    signer: Optional[Signer] = None
    nonce_cache: Optional[NonceCache] = None

    def require_signer(self) -> Signer:
        if self.signer is None:
            raise ConfigurationError("No server signing key configured")
        return self.signer

    @property
    def fee_payer(self) -> Optional[str]:
        return self.signer.address if self.signer else None

    async def close(self):
        await self.ledger.close()


def build_runtime(
    settings: Settings,
    *,
    ledger: Optional[SolanaLedger] = None,
    signer: Optional[Signer] = None,
) -> PaymentRuntime:
    """Wire signer, ledger, verifier and settler from settings."""
    if signer is None:
        signer = load_signer(settings.wallet_keypair)
    if ledger is None:
        ledger = SolanaLedger(get_rpc_url(settings.solana_network, settings.solana_rpc_url))

    nonce_cache = NonceCache() if settings.nonce_cache_enabled else None

    if signer:
        logger.info("Server signer loaded", fee_payer=signer.address, network=settings.solana_network)
    else:
        logger.warning("No server signing key configured")

    return PaymentRuntime(
        settings=settings,
        ledger=ledger,
        verifier=SolanaVerifier(ledger, nonce_cache=nonce_cache),
        settler=SolanaSettler(
            ledger,
            decimals=settings.asset_decimals,
            compute_unit_price=settings.max_compute_unit_price,
            compute_unit_limit=settings.compute_unit_limit,
        ),
        signer=signer,
        nonce_cache=nonce_cache,
    )
