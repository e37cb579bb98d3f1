"""
x402 payment client.

Probes a resource, answers a 402 challenge with a signed authorization and
retries exactly once.
"""

import json
import secrets
import time
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
import structlog

from .encoding import (
    PAYMENT_REQUIRED_HEADER,
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    authorization_message,
    decode_payment_response,
    encode_payment_header,
)
from .errors import PaymentAmountExceededError, PaymentRejectedError, UnexpectedResponseError
from .signers import Signer
from .types import (
    SUPPORTED_NETWORKS,
    X402_VERSION,
    Authorization,
    PaymentPayload,
    PaymentPayloadData,
    PaymentRequirements,
    Scheme,
    SettlementResult,
)

logger = structlog.get_logger()


def extract_requirements(response: httpx.Response) -> PaymentRequirements:
    """
    Pull the payment requirements out of a 402 response.

    Looks at the body's `accepts` list first, then a bare
    `paymentRequirements` object, then the X402-Payment-Required header.
    """
    raw: Optional[Any] = None
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None

    if isinstance(body, dict):
        accepts = body.get("accepts")
        if isinstance(accepts, list) and accepts:
            raw = accepts[0]
        elif body.get("paymentRequirements"):
            raw = body["paymentRequirements"]

    if raw is None:
        header = response.headers.get(PAYMENT_REQUIRED_HEADER)
        if header:
            try:
                raw = json.loads(header)
            except json.JSONDecodeError:
                raw = None

    if not isinstance(raw, dict):
        raise UnexpectedResponseError("402 response carries no payment requirements", status_code=402)

    try:
        return PaymentRequirements.model_validate(raw)
    except PydanticValidationError as e:
        raise UnexpectedResponseError(f"Malformed payment requirements: {e}", status_code=402)


def payment_response(response: httpx.Response) -> Optional[SettlementResult]:
    """Decode the settlement receipt a paid response carries, if any."""
    header = response.headers.get(X_PAYMENT_RESPONSE_HEADER)
    if not header:
        return None
    return decode_payment_response(header)


class PaymentClient:
    """
    Client for x402-protected resources.

    Args:
        signer: Local signer whose address pays
        http_client: Optional httpx.AsyncClient (owned by the caller)
        max_value: Refuse requirements above this many atomic units
        valid_for_seconds: Lookahead of the authorization window
        backdate_seconds: How far validAfter is set before now, to absorb
            ledger clock lag
    """

    def __init__(
        self,
        signer: Signer,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        max_value: Optional[int] = None,
        valid_for_seconds: int = 300,
        backdate_seconds: int = 30,
        clock: Callable[[], float] = time.time,
    ):
        self.signer = signer
        self.max_value = max_value
        self.valid_for_seconds = valid_for_seconds
        self.backdate_seconds = backdate_seconds
        self._clock = clock
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=30)

    async def __aenter__(self) -> "PaymentClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self):
        if self._owns_client:
            await self.http_client.aclose()

    def create_payment_payload(self, requirements: PaymentRequirements) -> PaymentPayload:
        """Build and sign an authorization that satisfies requirements."""
        if requirements.scheme != Scheme.EXACT.value:
            raise UnexpectedResponseError(f"Unsupported scheme: {requirements.scheme}", status_code=402)
        if requirements.network not in SUPPORTED_NETWORKS:
            raise UnexpectedResponseError(f"Unsupported network: {requirements.network}", status_code=402)

        amount = int(requirements.max_amount_required)
        if self.max_value is not None and amount > self.max_value:
            raise PaymentAmountExceededError(
                f"Payment amount {amount} exceeds maximum allowed value {self.max_value}",
                status_code=402,
            )

        now = int(self._clock())
        authorization = Authorization(
            from_=self.signer.address,
            to=requirements.pay_to,
            value=requirements.max_amount_required,
            valid_after=str(max(now - self.backdate_seconds, 0)),
            valid_before=str(now + self.valid_for_seconds),
            nonce=secrets.token_hex(16),
            asset=requirements.asset,
        )
        signature = self.signer.sign(authorization_message(requirements.network, authorization))

        return PaymentPayload(
            x402_version=X402_VERSION,
            scheme=requirements.scheme,
            network=requirements.network,
            payload=PaymentPayloadData(signature=str(signature), authorization=authorization),
        )

    async def request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        GET url, paying once if the server answers 402.

        Returns:
            The first response when it is not a 402, otherwise the paid response

        Raises:
            PaymentRejectedError: If the paid retry is not a success
            PaymentAmountExceededError: If the price exceeds max_value
            UnexpectedResponseError: If the 402 challenge is unusable
        """
        first = await self.http_client.get(url, params=params)
        if first.status_code != 402:
            return first

        requirements = extract_requirements(first)
        logger.info(
            "Payment required",
            amount=requirements.max_amount_required,
            description=requirements.description,
            pay_to=requirements.pay_to,
            resource=requirements.resource,
        )

        payload = self.create_payment_payload(requirements)
        paid = await self.http_client.get(
            url,
            params=params,
            headers={X_PAYMENT_HEADER: encode_payment_header(payload)},
        )

        if not paid.is_success:
            raise PaymentRejectedError(
                f"Payment request failed: {paid.status_code} {paid.reason_phrase}",
                status_code=paid.status_code,
            )
        return paid
