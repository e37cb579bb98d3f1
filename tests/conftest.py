"""
Shared fixtures: an in-memory ledger, real Ed25519 keys and signed payloads.
"""

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey

from x402_solana.config import Settings
from x402_solana.encoding import authorization_message
from x402_solana.errors import NetworkError
from x402_solana.runtime import build_runtime
from x402_solana.signers import KeypairSigner
from x402_solana.types import (
    Authorization,
    PaymentPayload,
    PaymentPayloadData,
    PaymentRequirements,
    PaymentRequirementsExtra,
)

NOW = 1_700_000_000
MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"


class FakeLedger:
    """Stands in for SolanaLedger without touching the network."""

    def __init__(self, now: int = NOW):
        self.now = now
        self.time_calls = 0
        self.sent = []
        self.fail_time = False
        self.fail_send = False
        self.closed = False

    async def current_time(self) -> int:
        self.time_calls += 1
        if self.fail_time:
            raise NetworkError("RPC unreachable")
        return self.now

    async def latest_blockhash(self) -> Hash:
        return Hash.default()

    async def send_transaction(self, transaction) -> str:
        if self.fail_send:
            raise NetworkError("Transaction simulation failed")
        self.sent.append(transaction)
        return f"sig{len(self.sent)}"

    async def close(self):
        self.closed = True


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def server_signer():
    return KeypairSigner.generate()


@pytest.fixture
def payer():
    return KeypairSigner.generate()


@pytest.fixture
def merchant():
    return str(Pubkey.new_unique())


@pytest.fixture
def settings(merchant):
    return Settings(
        _env_file=None,
        pay_to_address=merchant,
        asset_mint=MINT,
        solana_network="solana-devnet",
        wallet_keypair="",
    )


@pytest.fixture
def runtime(settings, ledger, server_signer):
    return build_runtime(settings, ledger=ledger, signer=server_signer)


@pytest.fixture
def requirements(merchant, server_signer):
    return PaymentRequirements(
        scheme="exact",
        network="solana-devnet",
        max_amount_required="1000",
        asset=MINT,
        pay_to=merchant,
        resource="https://api.example.com/premium",
        description="Premium content",
        max_timeout_seconds=60,
        extra=PaymentRequirementsExtra(fee_payer=server_signer.address),
    )


@pytest.fixture
def make_payload(payer):
    """Factory for payloads signed by `payer` (or `signer=`), with overrides."""

    def _make(requirements, signer=None, network=None, scheme="exact", signature=None, **fields):
        signer = signer or payer
        network = network or requirements.network
        values = {
            "from_": signer.address,
            "to": requirements.pay_to,
            "value": requirements.max_amount_required,
            "valid_after": str(NOW - 10),
            "valid_before": str(NOW + 300),
            "nonce": "a1b2c3d4",
            "asset": requirements.asset,
        }
        values.update(fields)
        authorization = Authorization(**values)
        if signature is None:
            signature = str(signer.sign(authorization_message(network, authorization)))
        return PaymentPayload(
            scheme=scheme,
            network=network,
            payload=PaymentPayloadData(signature=signature, authorization=authorization),
        )

    return _make
