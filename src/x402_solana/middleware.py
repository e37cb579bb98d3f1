"""
FastAPI middleware that gates protected routes behind x402 payments.

Per protected request:
1. No payment header -> 402 with the payment requirements (body and header)
2. Header present but undecodable or malformed -> 400
3. Verification fails -> 402 "Invalid payment" with a reason code
4. Verified -> optionally settle, then forward to the route handler

Settlement failure does not block the request; the error is attached to
request.state for the handler to act on.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
import structlog

from .encoding import (
    LEGACY_PAYMENT_HEADER,
    PAYMENT_REQUIRED_HEADER,
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    canonical_json,
    decode_payment_header,
    encode_payment_response,
    to_wire,
)
from .errors import ConfigurationError, NetworkError, SettlementError, ValidationError
from .runtime import PaymentRuntime
from .signers import Signer
from .types import (
    InvalidReason,
    PaymentRequiredResponse,
    PaymentRequirements,
    PaymentRequirementsExtra,
    SettlementResult,
)
from .verifier import VerifiedPayment

logger = structlog.get_logger()


class PaymentState(str, Enum):
    """Where a protected request ended up in the payment flow."""
    REQUIREMENT_ISSUED = "requirement_issued"
    PAYLOAD_INVALID = "payload_invalid"
    REJECTED = "rejected"
    VERIFIED = "verified"
    SETTLED = "settled"
    SETTLEMENT_FAILED = "settlement_failed"


@dataclass(frozen=True)
class PaymentRoute:
    """A protected endpoint and the price it charges."""
    path: str
    amount: str
    description: str
    method: str = "GET"
    mime_type: str = "application/json"
    pay_to: Optional[str] = None
    asset: Optional[str] = None
    network: Optional[str] = None
    max_timeout_seconds: Optional[int] = None
    settle_payment: Optional[bool] = None

    @property
    def key(self) -> Tuple[str, str]:
        return self.method.upper(), _normalize_path(self.path)


def _normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


def resource_url(request: Request, public_base_url: str = "") -> str:
    """Absolute URL of the requested resource."""
    if not public_base_url:
        return str(request.url)
    url = public_base_url.rstrip("/") + request.url.path
    if request.url.query:
        url += f"?{request.url.query}"
    return url


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate for FastAPI.

    Only requests matching a configured PaymentRoute are gated; everything
    else passes through unchanged.
    """

    def __init__(self, app, runtime: PaymentRuntime, routes: Iterable[PaymentRoute]):
        super().__init__(app)
        self.runtime = runtime
        self.routes: Dict[Tuple[str, str], PaymentRoute] = {route.key: route for route in routes}

    def match(self, request: Request) -> Optional[PaymentRoute]:
        return self.routes.get((request.method.upper(), _normalize_path(request.url.path)))

    def build_requirements(self, route: PaymentRoute, request: Request) -> PaymentRequirements:
        """
        Payment requirements for this route and request.

        Raises:
            ConfigurationError: If no recipient can be resolved, or the route
                names a network this runtime does not settle on
        """
        settings = self.runtime.settings
        if route.network and route.network != settings.solana_network:
            raise ConfigurationError(
                f"Route {route.path} requests {route.network} but the ledger is {settings.solana_network}"
            )
        fee_payer = self.runtime.fee_payer
        pay_to = route.pay_to or settings.pay_to_address or fee_payer
        if not pay_to:
            raise ConfigurationError("No payTo address and no server signer to derive one from")

        return PaymentRequirements(
            scheme="exact",
            network=settings.solana_network,
            max_amount_required=route.amount,
            asset=route.asset or settings.asset_mint,
            pay_to=pay_to,
            resource=resource_url(request, settings.public_base_url),
            description=route.description,
            mime_type=route.mime_type,
            max_timeout_seconds=route.max_timeout_seconds or settings.default_timeout_seconds,
            extra=PaymentRequirementsExtra(fee_payer=fee_payer),
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        route = self.match(request)
        if route is None:
            return await call_next(request)

        try:
            denial = await self._authorize(request, route)
        except ConfigurationError as e:
            logger.error("x402 server misconfigured", path=request.url.path, error=e.message)
            return JSONResponse(status_code=500, content={"error": "Server configuration error"})
        except NetworkError as e:
            logger.error("Ledger unavailable during verification", path=request.url.path, error=e.message)
            return JSONResponse(status_code=NetworkError.status_code, content={"error": "Payment verification failed"})
        except Exception as e:
            logger.exception("x402 middleware error", path=request.url.path, error=str(e))
            return JSONResponse(status_code=500, content={"error": "Payment verification failed"})

        if denial is not None:
            return denial

        response = await call_next(request)

        settled = getattr(request.state, "payment_settled", None)
        if settled is not None:
            response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(settled)
        return response

    async def _authorize(self, request: Request, route: PaymentRoute) -> Optional[Response]:
        """Run the payment flow. Returns a response to send, or None to forward."""
        header = request.headers.get(X_PAYMENT_HEADER)
        if header is None:
            header = request.headers.get(LEGACY_PAYMENT_HEADER)

        if header is None:
            requirements = self.build_requirements(route, request)
            logger.info("No payment header, returning 402", path=request.url.path, amount=route.amount)
            request.state.payment_state = PaymentState.REQUIREMENT_ISSUED
            return self.payment_required_response(requirements, route)

        try:
            payload = decode_payment_header(header)
        except ValidationError as e:
            logger.warning("Invalid payment header", path=request.url.path, details=e.details)
            request.state.payment_state = PaymentState.PAYLOAD_INVALID
            return JSONResponse(status_code=400, content={"error": e.message, "details": e.details})

        requirements = self.build_requirements(route, request)
        signer = self.runtime.require_signer()

        try:
            result = await asyncio.wait_for(
                self.runtime.verifier.verify(signer, payload, requirements),
                timeout=requirements.max_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise NetworkError(f"Verification exceeded {requirements.max_timeout_seconds}s")

        if not result.is_valid:
            request.state.payment_state = PaymentState.REJECTED
            return self.invalid_payment_response(requirements, result.invalid_reason)

        verified = result.verified
        authorization = payload.payload.authorization
        nonce_cache = self.runtime.nonce_cache
        if nonce_cache is not None and not nonce_cache.claim(
            verified.payer, authorization.nonce, int(authorization.valid_before), now=verified.verified_at
        ):
            logger.warning("Replayed payment nonce", payer=verified.payer, nonce=authorization.nonce)
            request.state.payment_state = PaymentState.REJECTED
            return self.invalid_payment_response(requirements, InvalidReason.NONCE_REUSED)

        request.state.payment_state = PaymentState.VERIFIED
        request.state.payment_payload = payload
        request.state.payment_requirements = requirements
        request.state.payment_amount = route.amount

        settle = route.settle_payment if route.settle_payment is not None else self.runtime.settings.settle_payment
        if settle:
            settlement = await self._settle(signer, verified)
            if settlement.success:
                request.state.payment_state = PaymentState.SETTLED
                request.state.payment_settled = settlement
            else:
                request.state.payment_state = PaymentState.SETTLEMENT_FAILED
                request.state.payment_settlement_error = SettlementError(
                    settlement.error_detail or "Settlement failed", result=settlement
                )
        return None

    async def _settle(self, signer: Signer, verified: VerifiedPayment) -> SettlementResult:
        timeout = verified.requirements.max_timeout_seconds
        try:
            return await asyncio.wait_for(self.runtime.settler.settle(signer, verified), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Payment settlement timed out", payer=verified.payer, timeout=timeout)
            return SettlementResult(
                success=False,
                error_detail=f"Settlement exceeded {timeout}s",
                network=verified.requirements.network,
                payer=verified.payer,
            )

    @staticmethod
    def payment_required_response(requirements: PaymentRequirements, route: PaymentRoute) -> JSONResponse:
        body = PaymentRequiredResponse(
            error="Payment required",
            accepts=[requirements],
            amount=route.amount,
        )
        return JSONResponse(
            status_code=402,
            content=to_wire(body),
            headers={PAYMENT_REQUIRED_HEADER: canonical_json(requirements)},
        )

    @staticmethod
    def invalid_payment_response(requirements: PaymentRequirements, reason: InvalidReason) -> JSONResponse:
        body = PaymentRequiredResponse(
            error="Invalid payment",
            accepts=[requirements],
            reason=reason.value,
        )
        return JSONResponse(status_code=402, content=to_wire(body))
