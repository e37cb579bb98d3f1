"""
x402 Solana Settler
Turns a verified authorization into an SPL token transfer on Solana.

The server signer pays the network fee and moves the tokens as the payer's
token-account delegate; the authorization nonce is recorded in a memo.
"""

import struct

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
import structlog

from .errors import NetworkError
from .ledger import SolanaLedger
from .signers import Signer
from .types import MAX_U64, SettlementResult
from .verifier import VerifiedPayment

logger = structlog.get_logger()

# Program IDs
SPL_TOKEN_PROGRAM = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
MEMO_PROGRAM = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

TRANSFER_CHECKED_DISCRIMINATOR = 12


def get_associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = SPL_TOKEN_PROGRAM,
) -> Pubkey:
    """Derive associated token address."""
    seeds = [
        bytes(owner),
        bytes(token_program),
        bytes(mint),
    ]
    ata, _ = Pubkey.find_program_address(seeds, ASSOCIATED_TOKEN_PROGRAM)
    return ata


def create_transfer_checked_instruction(
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
    amount: int,
    decimals: int,
) -> Instruction:
    """Create TransferChecked instruction."""
    data = struct.pack("<BQB", TRANSFER_CHECKED_DISCRIMINATOR, amount, decimals)
    keys = [
        AccountMeta(pubkey=source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    return Instruction(SPL_TOKEN_PROGRAM, data, keys)


def create_memo_instruction(memo: str) -> Instruction:
    return Instruction(MEMO_PROGRAM, memo.encode("utf-8"), [])


class SolanaSettler:
    """Submits verified payments to the ledger."""

    def __init__(
        self,
        ledger: SolanaLedger,
        *,
        decimals: int = 6,
        compute_unit_price: int = 5,
        compute_unit_limit: int = 200_000,
    ):
        self.ledger = ledger
        self.decimals = decimals
        self.compute_unit_price = compute_unit_price
        self.compute_unit_limit = compute_unit_limit

    def build_transaction(self, signer: Signer, verified: VerifiedPayment, blockhash) -> Transaction:
        """Build and sign the settlement transaction. Raises ValueError on bad addresses or amounts."""
        authorization = verified.payload.payload.authorization
        amount = int(authorization.value)
        if amount > MAX_U64:
            raise ValueError(f"Amount {amount} exceeds u64")

        payer = Pubkey.from_string(authorization.from_)
        mint = Pubkey.from_string(verified.requirements.asset)
        pay_to = Pubkey.from_string(verified.requirements.pay_to)

        instructions = [
            set_compute_unit_limit(self.compute_unit_limit),
            set_compute_unit_price(self.compute_unit_price),
            create_transfer_checked_instruction(
                source=get_associated_token_address(payer, mint),
                mint=mint,
                destination=get_associated_token_address(pay_to, mint),
                authority=signer.pubkey,
                amount=amount,
                decimals=self.decimals,
            ),
            create_memo_instruction(f"x402:{authorization.nonce}"),
        ]

        message = Message.new_with_blockhash(instructions, signer.pubkey, blockhash)
        signature = signer.sign(bytes(message))
        return Transaction.populate(message, [signature])

    async def settle(self, signer: Signer, verified: VerifiedPayment) -> SettlementResult:
        """
        Settle a verified payment on-chain.

        1. Fetch a recent blockhash
        2. Build the transfer with the server signer as fee payer and delegate
        3. Submit and return the transaction signature

        Failures are reported in the result, never raised.
        """
        if not isinstance(verified, VerifiedPayment):
            raise TypeError("settle() requires a VerifiedPayment")

        network = verified.requirements.network
        try:
            blockhash = await self.ledger.latest_blockhash()
            transaction = self.build_transaction(signer, verified, blockhash)
            tx_signature = await self.ledger.send_transaction(transaction)
        except NetworkError as e:
            logger.error("Payment settlement failed", payer=verified.payer, error=e.message)
            return SettlementResult(success=False, error_detail=e.message, network=network, payer=verified.payer)
        except ValueError as e:
            logger.error("Settlement transaction could not be built", payer=verified.payer, error=str(e))
            return SettlementResult(success=False, error_detail=str(e), network=network, payer=verified.payer)

        logger.info("Payment settled", tx_hash=tx_signature, network=network, payer=verified.payer)
        return SettlementResult(
            success=True,
            transaction_reference=tx_signature,
            network=network,
            payer=verified.payer,
        )
