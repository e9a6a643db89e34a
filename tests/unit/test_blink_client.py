"""Blink GraphQL client against a mocked transport."""

from __future__ import annotations

import json

import httpx
import pytest

from citadel.payments.blink import PAID, PENDING, BlinkClient, PaymentProviderError


def _client(handler, api_key: str = "key") -> BlinkClient:
    return BlinkClient("https://blink.test/graphql", api_key, "wallet-1", transport=httpx.MockTransport(handler))


def _invoice_response(operation: str, amount: int) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "data": {
                operation: {
                    "invoice": {"paymentRequest": "lnbc1test", "paymentHash": "h1", "satoshis": amount},
                    "errors": [],
                }
            }
        },
    )


class TestCreateInvoice:
    @pytest.mark.asyncio
    async def test_create_invoice(self):
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return _invoice_response("lnInvoiceCreate", 1000)

        invoice = await _client(handler).create_invoice(1000, "gm", expires_in=300)
        assert invoice.payment_request == "lnbc1test"
        assert invoice.payment_hash == "h1"
        assert invoice.satoshis == 1000
        assert captured["headers"]["X-API-KEY"] == "key"
        assert captured["body"]["variables"]["input"] == {
            "walletId": "wallet-1",
            "amount": 1000,
            "memo": "gm",
            "expiresIn": 5,
        }

    @pytest.mark.asyncio
    async def test_short_expiry_is_at_least_a_minute(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _invoice_response("lnInvoiceCreate", 10)

        await _client(handler).create_invoice(10, "gm", expires_in=30)
        assert bodies[0]["variables"]["input"]["expiresIn"] == 1

    @pytest.mark.asyncio
    async def test_on_behalf_of_recipient(self):
        queries: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            queries.append(json.loads(request.content)["query"])
            return _invoice_response("lnInvoiceCreateOnBehalfOfRecipient", 500)

        invoice = await _client(handler).create_invoice_on_behalf_of_recipient(500, "group")
        assert invoice.satoshis == 500
        assert "lnInvoiceCreateOnBehalfOfRecipient" in queries[0]

    @pytest.mark.asyncio
    async def test_non_positive_amount(self):
        with pytest.raises(ValueError, match="positive"):
            await _client(lambda r: httpx.Response(200)).create_invoice(0, "gm")

    @pytest.mark.asyncio
    async def test_operation_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"data": {"lnInvoiceCreate": {"invoice": None, "errors": [{"message": "wallet locked"}]}}},
            )

        with pytest.raises(PaymentProviderError, match="wallet locked"):
            await _client(handler).create_invoice(100, "gm")

    @pytest.mark.asyncio
    async def test_graphql_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "not authorized"}]})

        with pytest.raises(PaymentProviderError, match="not authorized"):
            await _client(handler).create_invoice(100, "gm")

    @pytest.mark.asyncio
    async def test_http_error(self):
        with pytest.raises(PaymentProviderError, match="Blink request failed"):
            await _client(lambda r: httpx.Response(503)).create_invoice(100, "gm")

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with pytest.raises(PaymentProviderError, match="not configured"):
            await _client(lambda r: httpx.Response(200), api_key="").create_invoice(100, "gm")


class TestPaymentStatus:
    @pytest.mark.asyncio
    async def test_paid(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["variables"] == {"input": {"paymentHash": "h1"}}
            return httpx.Response(200, json={"data": {"lnInvoicePaymentStatusByHash": {"status": "PAID"}}})

        assert await _client(handler).get_payment_status("h1") == PAID

    @pytest.mark.asyncio
    async def test_missing_status_is_pending(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"lnInvoicePaymentStatusByHash": None}})

        assert await _client(handler).get_payment_status("h1") == PENDING
