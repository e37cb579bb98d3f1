"""
Wire encodings for x402 headers.
"""

import base64
import json
from typing import Any, Dict, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .types import Authorization, PaymentPayload, SettlementResult

# x402 protocol headers
X_PAYMENT_HEADER = "X-PAYMENT"
LEGACY_PAYMENT_HEADER = "X402-Payment"
PAYMENT_REQUIRED_HEADER = "X402-Payment-Required"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

INVALID_PAYLOAD_MESSAGE = "Invalid payment payload format"


def safe_base64_encode(data: Union[str, bytes]) -> str:
    """Encode string or bytes to a base64 string."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def safe_base64_decode(data: str) -> str:
    """Decode a base64 string to utf-8 text. Raises ValueError on bad input."""
    return base64.b64decode(data, validate=True).decode("utf-8")


def to_wire(model: BaseModel) -> Dict[str, Any]:
    """Dump a model the way it travels: camelCase aliases, unset optionals dropped."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def canonical_json(value: Union[BaseModel, Dict[str, Any]]) -> str:
    """Deterministic JSON: sorted keys, compact separators, ASCII only."""
    if isinstance(value, BaseModel):
        value = to_wire(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def authorization_message(network: str, authorization: Authorization) -> bytes:
    """Bytes the payer signs and the verifier checks."""
    return canonical_json({"network": network, "authorization": to_wire(authorization)}).encode("utf-8")


def encode_payment_header(payload: PaymentPayload) -> str:
    """Encode a payment payload for the X-PAYMENT header."""
    return safe_base64_encode(canonical_json(payload))


def decode_payment_header(header_value: str) -> PaymentPayload:
    """
    Decode an X-PAYMENT header into a validated PaymentPayload.

    Accepts raw JSON text as well as base64-encoded JSON. Raises
    ValidationError with field paths on any failure.
    """
    text = header_value.strip()
    if not text.startswith("{"):
        try:
            text = safe_base64_decode(text)
        except ValueError:
            raise ValidationError(
                INVALID_PAYLOAD_MESSAGE,
                [{"path": "", "message": "header is neither JSON nor base64-encoded JSON"}],
            )

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(INVALID_PAYLOAD_MESSAGE, [{"path": "", "message": f"invalid JSON: {e.msg}"}])

    if not isinstance(data, dict):
        raise ValidationError(INVALID_PAYLOAD_MESSAGE, [{"path": "", "message": "payload must be a JSON object"}])

    try:
        return PaymentPayload.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(INVALID_PAYLOAD_MESSAGE, e)


def encode_payment_response(result: SettlementResult) -> str:
    """Encode a settlement result for the X-PAYMENT-RESPONSE header."""
    return safe_base64_encode(canonical_json(result))


def decode_payment_response(header_value: str) -> SettlementResult:
    """Decode an X-PAYMENT-RESPONSE header back into a SettlementResult."""
    return SettlementResult.model_validate_json(safe_base64_decode(header_value))
