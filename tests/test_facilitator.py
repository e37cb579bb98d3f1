"""
Tests for the facilitator endpoints.
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from x402_solana.encoding import to_wire
from x402_solana.main import create_app
from x402_solana.runtime import build_runtime


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime=runtime))


def _body(payload, requirements):
    return {"paymentPayload": to_wire(payload), "paymentRequirements": to_wire(requirements)}


def test_supported(client, server_signer):
    response = client.get("/facilitator/supported")

    assert response.status_code == 200
    assert response.json() == [
        {
            "x402Version": 1,
            "scheme": "exact",
            "network": "solana-devnet",
            "extra": {"feePayer": server_signer.address},
        }
    ]


def test_supported_without_key(settings, ledger):
    client = TestClient(create_app(runtime=build_runtime(settings, ledger=ledger, signer=None)))
    assert client.get("/facilitator/supported").json() == []


def test_describe_endpoints(client):
    for path in ("/facilitator/verify", "/facilitator/settle"):
        body = client.get(path).json()
        assert body["endpoint"] == path
        assert set(body["body"]) == {"paymentPayload", "paymentRequirements"}


def test_verify_valid(client, requirements, make_payload, payer):
    response = client.post("/facilitator/verify", json=_body(make_payload(requirements), requirements))

    assert response.status_code == 200
    assert response.json() == {"isValid": True, "payer": payer.address}


def test_verify_invalid(client, requirements, make_payload):
    payload = make_payload(requirements, value="999")
    response = client.post("/facilitator/verify", json=_body(payload, requirements))

    assert response.status_code == 200
    assert response.json()["isValid"] is False
    assert response.json()["invalidReason"] == "insufficient_amount"


def test_verify_does_not_consume_nonce(client, requirements, make_payload):
    body = _body(make_payload(requirements), requirements)

    assert client.post("/facilitator/verify", json=body).json()["isValid"] is True
    assert client.post("/facilitator/verify", json=body).json()["isValid"] is True
    assert client.post("/facilitator/settle", json=body).json()["success"] is True


def test_verify_validation_error(client, requirements, make_payload):
    body = _body(make_payload(requirements), requirements)
    body["paymentRequirements"]["maxAmountRequired"] = "0.5"

    response = client.post("/facilitator/verify", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == "Validation Error"
    assert response.json()["details"][0]["path"] == "paymentRequirements.maxAmountRequired"


def test_verify_malformed_json(client):
    response = client.post(
        "/facilitator/verify",
        content=b"{oops",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400


def test_verify_unsupported_network(client, requirements, make_payload):
    body = _body(make_payload(requirements), requirements)
    body["paymentRequirements"]["network"] = "base-sepolia"

    response = client.post("/facilitator/verify", json=body)

    assert response.status_code == 400
    assert "Invalid network" in response.json()["details"][0]["message"]


def test_verify_without_key(settings, ledger, requirements, make_payload):
    client = TestClient(create_app(runtime=build_runtime(settings, ledger=ledger, signer=None)))
    response = client.post("/facilitator/verify", json=_body(make_payload(requirements), requirements))

    assert response.status_code == 500
    assert response.json() == {"error": "Server configuration error"}


def test_verify_ledger_unavailable(client, ledger, requirements, make_payload):
    ledger.fail_time = True
    response = client.post("/facilitator/verify", json=_body(make_payload(requirements), requirements))

    assert response.status_code == 502
    assert "RPC" not in json.dumps(response.json())


def test_settle_valid(client, ledger, requirements, make_payload, payer):
    response = client.post("/facilitator/settle", json=_body(make_payload(requirements), requirements))

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "transactionReference": "sig1",
        "network": "solana-devnet",
        "payer": payer.address,
    }
    assert len(ledger.sent) == 1


def test_settle_never_submits_invalid_payment(client, ledger, requirements, make_payload):
    payload = make_payload(requirements, valid_before="1")
    response = client.post("/facilitator/settle", json=_body(payload, requirements))

    body = response.json()
    assert body["success"] is False
    assert body["errorDetail"] == "Verification failed: expired"
    assert ledger.sent == []


def test_settle_replay(client, ledger, requirements, make_payload):
    body = _body(make_payload(requirements), requirements)

    assert client.post("/facilitator/settle", json=body).json()["success"] is True
    second = client.post("/facilitator/settle", json=body).json()

    assert second["success"] is False
    assert second["errorDetail"] == "Verification failed: nonce_reused"
    assert len(ledger.sent) == 1


def test_settle_ledger_failure(client, ledger, requirements, make_payload):
    ledger.fail_send = True
    response = client.post("/facilitator/settle", json=_body(make_payload(requirements), requirements))

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["errorDetail"]


@pytest.mark.parametrize("path", ["/facilitator/verify", "/facilitator/settle"])
def test_network_not_served_is_rejected(client, ledger, requirements, make_payload, path):
    requirements.network = "solana"
    response = client.post(path, json=_body(make_payload(requirements), requirements))

    assert response.status_code == 400
    assert response.json()["details"][0] == {
        "path": "paymentRequirements.network",
        "message": "Invalid network: solana",
    }
    assert ledger.time_calls == 0
    assert ledger.sent == []


async def _slow(*args, **kwargs):
    await asyncio.sleep(5)


def test_verify_timeout(client, runtime, requirements, make_payload):
    requirements.max_timeout_seconds = 1
    runtime.verifier.verify = _slow

    response = client.post("/facilitator/verify", json=_body(make_payload(requirements), requirements))

    assert response.status_code == 502
    assert response.json() == {"error": "Ledger unavailable"}


def test_settle_timeout(client, runtime, ledger, requirements, make_payload, payer):
    requirements.max_timeout_seconds = 1
    runtime.settler.settle = _slow

    response = client.post("/facilitator/settle", json=_body(make_payload(requirements), requirements))

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "errorDetail": "Settlement exceeded 1s",
        "network": "solana-devnet",
        "payer": payer.address,
    }
    assert ledger.sent == []


def test_unexpected_error_is_json(runtime, requirements, make_payload):
    async def explode(*args, **kwargs):
        raise RuntimeError("boom")

    runtime.settler.settle = explode
    client = TestClient(create_app(runtime=runtime), raise_server_exceptions=False)

    response = client.post("/facilitator/settle", json=_body(make_payload(requirements), requirements))

    assert response.status_code == 500
    assert response.json() == {"error": "Internal Server Error"}
