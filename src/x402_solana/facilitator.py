"""
x402 Solana Facilitator endpoints.

Exposes the verifier and settler over HTTP for resource servers that do not
hold a signing key themselves.
"""

import asyncio
import json
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
import structlog

from .encoding import to_wire
from .errors import ConfigurationError, NetworkError, ValidationError
from .runtime import PaymentRuntime
from .types import (
    SUPPORTED_NETWORKS,
    FacilitatorRequest,
    InvalidReason,
    PaymentRequirementsExtra,
    SettlementResult,
    SupportedKind,
)
from .verifier import VerifyResult

logger = structlog.get_logger()

router = APIRouter(prefix="/facilitator", tags=["facilitator"])


def get_runtime(request: Request) -> PaymentRuntime:
    return request.app.state.runtime


# ==============================================
# Exception handlers (registered on the app)
# ==============================================

async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Render ValidationError as a 400 with field paths."""
    return JSONResponse(status_code=400, content={"error": exc.message, "details": exc.details})


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Server configuration error", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=500, content={"error": "Server configuration error"})


async def network_error_handler(request: Request, exc: NetworkError) -> JSONResponse:
    logger.error("Ledger unavailable", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=NetworkError.status_code, content={"error": "Ledger unavailable"})


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


async def _read_request(request: Request, runtime: PaymentRuntime) -> FacilitatorRequest:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Validation Error", [{"path": "", "message": "body must be valid JSON"}])

    if not isinstance(body, dict):
        raise ValidationError("Validation Error", [{"path": "", "message": "body must be a JSON object"}])
    try:
        parsed = FacilitatorRequest.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic("Validation Error", e)

    network = parsed.payment_requirements.network
    if network not in SUPPORTED_NETWORKS or network != runtime.settings.solana_network:
        raise ValidationError(
            "Validation Error",
            [{"path": "paymentRequirements.network", "message": f"Invalid network: {network}"}],
        )
    return parsed


async def _verify(runtime: PaymentRuntime, parsed: FacilitatorRequest) -> VerifyResult:
    signer = runtime.require_signer()
    timeout = parsed.payment_requirements.max_timeout_seconds
    try:
        return await asyncio.wait_for(
            runtime.verifier.verify(signer, parsed.payment_payload, parsed.payment_requirements),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise NetworkError(f"Verification exceeded {timeout}s")


@router.get("/supported")
async def get_supported(runtime: PaymentRuntime = Depends(get_runtime)) -> List[Dict[str, Any]]:
    """
    Get supported payment schemes and networks.

    Empty when no signing key is configured, since nothing could be settled.
    """
    if runtime.signer is None:
        return []

    kind = SupportedKind(
        scheme="exact",
        network=runtime.settings.solana_network,
        extra=PaymentRequirementsExtra(fee_payer=runtime.signer.address),
    )
    return [to_wire(kind)]


@router.get("/verify")
async def describe_verify(request: Request):
    return {
        "endpoint": request.url.path,
        "description": "POST to verify x402 payments",
        "body": {
            "paymentPayload": "PaymentPayload",
            "paymentRequirements": "PaymentRequirements",
        },
    }


@router.get("/settle")
async def describe_settle(request: Request):
    return {
        "endpoint": request.url.path,
        "description": "POST to settle x402 payments",
        "body": {
            "paymentPayload": "PaymentPayload",
            "paymentRequirements": "PaymentRequirements",
        },
    }


@router.post("/verify")
async def verify_payment(request: Request, runtime: PaymentRuntime = Depends(get_runtime)):
    """
    Verify a payment payload against payment requirements.

    Does not consume the nonce; a later /settle call still succeeds.
    """
    parsed = await _read_request(request, runtime)
    result = await _verify(runtime, parsed)
    return to_wire(result.to_response())


@router.post("/settle")
async def settle_payment(request: Request, runtime: PaymentRuntime = Depends(get_runtime)):
    """
    Settle a payment on Solana.

    The payload is verified first; an invalid payload is never submitted.
    """
    parsed = await _read_request(request, runtime)
    result = await _verify(runtime, parsed)
    requirements = parsed.payment_requirements

    if not result.is_valid:
        return to_wire(SettlementResult(
            success=False,
            error_detail=f"Verification failed: {result.invalid_reason.value}",
            network=requirements.network,
            payer=result.payer,
        ))

    authorization = parsed.payment_payload.payload.authorization
    if runtime.nonce_cache is not None and not runtime.nonce_cache.claim(
        result.payer, authorization.nonce, int(authorization.valid_before), now=result.verified.verified_at
    ):
        return to_wire(SettlementResult(
            success=False,
            error_detail=f"Verification failed: {InvalidReason.NONCE_REUSED.value}",
            network=requirements.network,
            payer=result.payer,
        ))

    try:
        settlement = await asyncio.wait_for(
            runtime.settler.settle(runtime.require_signer(), result.verified),
            timeout=requirements.max_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("Payment settlement timed out", payer=result.payer)
        settlement = SettlementResult(
            success=False,
            error_detail=f"Settlement exceeded {requirements.max_timeout_seconds}s",
            network=requirements.network,
            payer=result.payer,
        )
    return to_wire(settlement)
