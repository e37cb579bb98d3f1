"""
x402 Protocol Types for Solana
Based on: https://github.com/coinbase/x402/blob/main/specs/schemes/exact/scheme_exact_svm.md

Amounts and timestamps travel as decimal strings so that values beyond the
float range survive every hop unchanged.
"""

import re
from enum import Enum
from typing import Any, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

X402_VERSION = 1

# Amounts and timestamps are u64 on the ledger: at most 20 decimal digits
_UINT_PATTERN = re.compile(r"[0-9]{1,20}")
MAX_U64 = 2**64 - 1


class Scheme(str, Enum):
    """Supported payment schemes."""
    EXACT = "exact"


class Network(str, Enum):
    """Supported networks."""
    SOLANA = "solana"
    SOLANA_DEVNET = "solana-devnet"


SUPPORTED_NETWORKS = tuple(network.value for network in Network)


class InvalidReason(str, Enum):
    """Why a payment payload was rejected by the verifier."""
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    NETWORK_MISMATCH = "network_mismatch"
    RECIPIENT_MISMATCH = "recipient_mismatch"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    ASSET_MISMATCH = "asset_mismatch"
    FEE_PAYER_MISMATCH = "fee_payer_mismatch"
    FEE_PAYER_IS_PAYER = "fee_payer_is_payer"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    INVALID_SIGNATURE = "invalid_signature"
    NONCE_REUSED = "nonce_reused"


def _require_uint_string(value: str, field: str) -> str:
    if not _UINT_PATTERN.fullmatch(value) or int(value) > MAX_U64:
        raise ValueError(f"{field} must be a non-negative 64-bit integer encoded as a string")
    return value


# ==============================================
# Payment Requirements (Server → Client)
# ==============================================

class PaymentRequirementsExtra(BaseModel):
    """Extra fields for Solana payment requirements."""
    fee_payer: Optional[str] = Field(default=None, alias="feePayer", description="Public key of fee payer (facilitator)")

    class Config:
        populate_by_name = True


class PaymentRequirements(BaseModel):
    """Payment requirements returned in 402 response."""
    scheme: str = Field(default=Scheme.EXACT.value)
    network: str = Field(default=Network.SOLANA_DEVNET.value)
    max_amount_required: str = Field(..., alias="maxAmountRequired", description="Amount in atomic units (USDC has 6 decimals)")
    asset: str = Field(..., description="Token mint address")
    pay_to: str = Field(..., alias="payTo", description="Merchant wallet address")
    resource: str = Field(..., description="URL of the resource being paid for")
    description: str = Field(default="", description="Human-readable description")
    mime_type: str = Field(default="application/json", alias="mimeType")
    max_timeout_seconds: int = Field(default=60, alias="maxTimeoutSeconds")
    output_schema: Optional[Any] = Field(default=None, alias="outputSchema")
    extra: Optional[PaymentRequirementsExtra] = None

    class Config:
        populate_by_name = True

    @field_validator("max_amount_required")
    def validate_max_amount_required(cls, v):
        return _require_uint_string(v, "maxAmountRequired")

    @field_validator("pay_to", "asset")
    def validate_not_empty(cls, v):
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("resource")
    def validate_resource(cls, v):
        parsed = urlparse(v)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("resource must be an absolute URL")
        return v

    @field_validator("max_timeout_seconds")
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("maxTimeoutSeconds must be positive")
        return v


class PaymentRequiredResponse(BaseModel):
    """Full 402 response body."""
    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    error: str = Field(default="")
    accepts: List[PaymentRequirements]
    amount: Optional[str] = None
    reason: Optional[str] = None

    class Config:
        populate_by_name = True


# ==============================================
# Payment Payload (Client → Server)
# ==============================================

class Authorization(BaseModel):
    """Transfer authorization signed by the payer."""
    from_: str = Field(..., alias="from")
    to: str
    value: str
    valid_after: str = Field(..., alias="validAfter")
    valid_before: str = Field(..., alias="validBefore")
    nonce: str
    asset: Optional[str] = None

    class Config:
        populate_by_name = True

    @field_validator("value", "valid_after", "valid_before")
    def validate_uint(cls, v, info):
        return _require_uint_string(v, info.field_name)

    @field_validator("nonce", "from_", "to")
    def validate_not_empty(cls, v):
        if not v:
            raise ValueError("must not be empty")
        return v


class PaymentPayloadData(BaseModel):
    """Payload body: the payer's signature over the authorization."""
    signature: str = Field(..., description="Base58-encoded Ed25519 signature")
    authorization: Authorization


class PaymentPayload(BaseModel):
    """X-PAYMENT header payload (decoded from base64 or raw JSON)."""
    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    scheme: str
    network: str
    payload: PaymentPayloadData

    class Config:
        populate_by_name = True


# ==============================================
# Facilitator API Types
# ==============================================

class FacilitatorRequest(BaseModel):
    """Body of POST /facilitator/verify and /facilitator/settle."""
    payment_payload: PaymentPayload = Field(..., alias="paymentPayload")
    payment_requirements: PaymentRequirements = Field(..., alias="paymentRequirements")

    class Config:
        populate_by_name = True


class VerifyResponse(BaseModel):
    """Response from payment verification."""
    is_valid: bool = Field(..., alias="isValid")
    invalid_reason: Optional[str] = Field(default=None, alias="invalidReason")
    payer: Optional[str] = None

    class Config:
        populate_by_name = True


class SettlementResult(BaseModel):
    """Outcome of submitting a verified payment to the ledger."""
    success: bool
    transaction_reference: Optional[str] = Field(default=None, alias="transactionReference")
    error_detail: Optional[str] = Field(default=None, alias="errorDetail")
    network: Optional[str] = None
    payer: Optional[str] = None

    class Config:
        populate_by_name = True


class SupportedKind(BaseModel):
    """Supported scheme/network pair."""
    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    scheme: str
    network: str
    extra: Optional[PaymentRequirementsExtra] = None

    class Config:
        populate_by_name = True
