# Overview: Pytest coverage for the Flutterwave transfer adapter using an httpx mock transport.

import json

import httpx

from cookwallet.services.payment_gateway import (
    FlutterwaveGateway,
    TRANSFER_FAILED,
    TRANSFER_SUCCESS,
    build_gateway,
)


def _gateway(handler):
    return FlutterwaveGateway(
        base_url="https://api.example.test/v3/",
        secret_key="sk-test",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def _transfer(gateway, provider="orange_money"):
    return gateway.initiate_transfer(
        amount=10000,
        currency="XAF",
        destination_account="699123456",
        idempotency_key="WD-42",
        provider=provider,
    )


class TestFlutterwaveGateway:
    def test_success_request_shape(self, app):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "data": {"id": 555, "status": "NEW"}})

        result = _transfer(_gateway(handler))

        assert result.status == TRANSFER_SUCCESS
        assert result.succeeded is True
        assert result.provider_reference == "555"
        assert seen["url"] == "https://api.example.test/v3/transfers"
        assert seen["headers"]["Authorization"] == "Bearer sk-test"
        assert seen["headers"]["X-Idempotency-Key"] == "WD-42"
        assert seen["body"]["reference"] == "WD-42"
        assert seen["body"]["account_bank"] == "FMM"
        assert seen["body"]["amount"] == 10000

    def test_mtn_bank_code(self, app):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "data": {"id": 1}})

        _transfer(_gateway(handler), provider="mtn_momo")
        assert seen["body"]["account_bank"] == "MPS"

    def test_provider_error(self, app):
        def handler(request):
            return httpx.Response(400, json={"status": "error", "message": "Insufficient balance"})

        result = _transfer(_gateway(handler))
        assert result.status == TRANSFER_FAILED
        assert result.error == "Insufficient balance"
        assert result.raw_response["status"] == "error"
        assert result.is_timeout is False

    def test_non_json_error(self, app):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        result = _transfer(_gateway(handler))
        assert result.succeeded is False
        assert result.error == "HTTP 502"
        assert result.raw_response == {"raw": "Bad Gateway"}

    def test_timeout(self, app):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = _transfer(_gateway(handler))
        assert result.succeeded is False
        assert result.is_timeout is True
        assert result.error == "Connection timeout"

    def test_connection_error(self, app):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = _transfer(_gateway(handler))
        assert result.succeeded is False
        assert result.is_timeout is False
        assert result.error == "Transport error: ConnectError"


def test_build_gateway_from_config(app):
    gateway = build_gateway(app.config)
    assert isinstance(gateway, FlutterwaveGateway)
    assert gateway.base_url == "https://api.flutterwave.com/v3"
