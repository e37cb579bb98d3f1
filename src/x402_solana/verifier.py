"""
x402 Solana Verifier
Checks a payment payload against the requirements it claims to satisfy.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .encoding import authorization_message
from .ledger import SolanaLedger
from .nonces import NonceCache
from .signers import Signer, verify_signature
from .types import (
    InvalidReason,
    PaymentPayload,
    PaymentRequirements,
    Scheme,
    VerifyResponse,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class VerifiedPayment:
    """A payload that passed every verification check.

    Only the Verifier creates these; the Settler accepts nothing else.
    """
    payload: PaymentPayload
    requirements: PaymentRequirements
    payer: str
    verified_at: int


@dataclass(frozen=True)
class VerifyResult:
    is_valid: bool
    invalid_reason: Optional[InvalidReason] = None
    payer: Optional[str] = None
    verified: Optional[VerifiedPayment] = None

    def __bool__(self) -> bool:
        return self.is_valid

    def to_response(self) -> VerifyResponse:
        return VerifyResponse(
            is_valid=self.is_valid,
            invalid_reason=self.invalid_reason.value if self.invalid_reason else None,
            payer=self.payer,
        )


def _reject(reason: InvalidReason, payer: Optional[str] = None, **context) -> VerifyResult:
    logger.info("Payment rejected", reason=reason.value, payer=payer, **context)
    return VerifyResult(is_valid=False, invalid_reason=reason, payer=payer)


class SolanaVerifier:
    """
    Verifier for the exact scheme on Solana.

    Checks, in order, stopping at the first failure:
    1. Scheme is "exact" on both sides
    2. Network matches
    3. Recipient, amount, asset and fee payer match the requirements
    4. Ledger time lies within [validAfter, validBefore]
    5. Ed25519 signature by `from` over the authorization
    6. Nonce has not been claimed by an earlier request

    The ledger time lookup is the only network call; its failure raises
    NetworkError instead of producing an invalid result.
    """

    def __init__(self, ledger: SolanaLedger, nonce_cache: Optional[NonceCache] = None):
        self.ledger = ledger
        self.nonce_cache = nonce_cache

    async def verify(
        self,
        signer: Signer,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResult:
        authorization = payload.payload.authorization
        payer = authorization.from_

        if payload.scheme != Scheme.EXACT.value or requirements.scheme != Scheme.EXACT.value:
            return _reject(InvalidReason.UNSUPPORTED_SCHEME, payer, scheme=payload.scheme)

        if payload.network != requirements.network:
            return _reject(
                InvalidReason.NETWORK_MISMATCH,
                payer,
                network=payload.network,
                expected=requirements.network,
            )

        if authorization.to != requirements.pay_to:
            return _reject(InvalidReason.RECIPIENT_MISMATCH, payer, to=authorization.to)

        if int(authorization.value) < int(requirements.max_amount_required):
            return _reject(
                InvalidReason.INSUFFICIENT_AMOUNT,
                payer,
                value=authorization.value,
                required=requirements.max_amount_required,
            )

        if authorization.asset is not None and authorization.asset != requirements.asset:
            return _reject(InvalidReason.ASSET_MISMATCH, payer, asset=authorization.asset)

        fee_payer = requirements.extra.fee_payer if requirements.extra else None
        if fee_payer and fee_payer != signer.address:
            return _reject(InvalidReason.FEE_PAYER_MISMATCH, payer, fee_payer=fee_payer)

        # The server signer moves the funds; it must never be the payer itself
        if payer == signer.address:
            return _reject(InvalidReason.FEE_PAYER_IS_PAYER, payer)

        now = await self.ledger.current_time()

        if now < int(authorization.valid_after):
            return _reject(InvalidReason.NOT_YET_VALID, payer, now=now, valid_after=authorization.valid_after)

        if now > int(authorization.valid_before):
            return _reject(InvalidReason.EXPIRED, payer, now=now, valid_before=authorization.valid_before)

        message = authorization_message(payload.network, authorization)
        if not verify_signature(payer, message, payload.payload.signature):
            return _reject(InvalidReason.INVALID_SIGNATURE, payer)

        if self.nonce_cache is not None and self.nonce_cache.seen(payer, authorization.nonce, now):
            return _reject(InvalidReason.NONCE_REUSED, payer, nonce=authorization.nonce)

        logger.info("Payment verified", payer=payer, value=authorization.value, network=payload.network)
        return VerifyResult(
            is_valid=True,
            payer=payer,
            verified=VerifiedPayment(
                payload=payload,
                requirements=requirements,
                payer=payer,
                verified_at=now,
            ),
        )
