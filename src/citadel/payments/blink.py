"""
Blink Lightning wallet client (GraphQL over HTTPS).

Only three operations are used: creating an invoice on the service
wallet, creating one on behalf of the recipient wallet (group POW
settlement), and checking payment status by hash.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from citadel.config import Settings, get_settings

logger = structlog.get_logger()

_CREATE_INVOICE = """
mutation LnInvoiceCreate($input: LnInvoiceCreateInput!) {
  lnInvoiceCreate(input: $input) {
    invoice { paymentRequest paymentHash satoshis }
    errors { message }
  }
}
"""

_CREATE_INVOICE_ON_BEHALF = """
mutation LnInvoiceCreateOnBehalfOfRecipient($input: LnInvoiceCreateOnBehalfOfRecipientInput!) {
  lnInvoiceCreateOnBehalfOfRecipient(input: $input) {
    invoice { paymentRequest paymentHash satoshis }
    errors { message }
  }
}
"""

_PAYMENT_STATUS = """
query LnInvoicePaymentStatusByHash($input: LnInvoicePaymentStatusByHashInput!) {
  lnInvoicePaymentStatusByHash(input: $input) {
    status
  }
}
"""

PAID = "PAID"
PENDING = "PENDING"


class PaymentProviderError(Exception):
    """The Lightning provider rejected a request or could not be reached."""


@dataclass(frozen=True)
class Invoice:
    payment_request: str
    payment_hash: str
    satoshis: int


class BlinkClient:
    def __init__(
        self,
        api_url: str,
        api_key: str,
        wallet_id: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.wallet_id = wallet_id
        self._transport = transport
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> BlinkClient:
        settings = settings or get_settings()
        return cls(settings.blink_api_url, settings.blink_api_key, settings.blink_wallet_id)

    async def _execute(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key or not self.wallet_id:
            msg = "Blink API is not configured"
            raise PaymentProviderError(msg)
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            try:
                response = await client.post(
                    self.api_url,
                    headers={"X-API-KEY": self.api_key},
                    json={"query": query, "variables": variables},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning("blink_request_failed", error=str(e))
                msg = f"Blink request failed: {e}"
                raise PaymentProviderError(msg) from e
        body: dict[str, Any] = response.json()
        if body.get("errors"):
            logger.warning("blink_graphql_errors", errors=body["errors"])
            msg = body["errors"][0].get("message", "GraphQL error")
            raise PaymentProviderError(msg)
        return body.get("data") or {}

    async def _create(self, query: str, operation: str, amount: int, memo: str, expires_in: int | None) -> Invoice:
        if amount <= 0:
            msg = "Invoice amount must be positive"
            raise ValueError(msg)
        invoice_input: dict[str, Any] = {"walletId": self.wallet_id, "amount": amount, "memo": memo}
        if expires_in is not None:
            # Blink takes invoice expiry in minutes
            invoice_input["expiresIn"] = max(1, expires_in // 60)
        data = await self._execute(query, {"input": invoice_input})
        result = data.get(operation) or {}
        if result.get("errors"):
            logger.warning("blink_invoice_errors", operation=operation, errors=result["errors"])
            msg = result["errors"][0].get("message", "Invoice creation failed")
            raise PaymentProviderError(msg)
        invoice = result.get("invoice")
        if not invoice or not invoice.get("paymentRequest"):
            msg = "Blink returned no invoice"
            raise PaymentProviderError(msg)
        return Invoice(
            payment_request=invoice["paymentRequest"],
            payment_hash=invoice.get("paymentHash", ""),
            satoshis=int(invoice.get("satoshis") or amount),
        )

    async def create_invoice(self, amount: int, memo: str, expires_in: int | None = None) -> Invoice:
        """Create a BOLT11 invoice paying into the service wallet."""
        return await self._create(_CREATE_INVOICE, "lnInvoiceCreate", amount, memo, expires_in)

    async def create_invoice_on_behalf_of_recipient(
        self, amount: int, memo: str, expires_in: int | None = None
    ) -> Invoice:
        return await self._create(
            _CREATE_INVOICE_ON_BEHALF, "lnInvoiceCreateOnBehalfOfRecipient", amount, memo, expires_in
        )

    async def get_payment_status(self, payment_hash: str) -> str:
        """Return the provider status string, ``PENDING`` when it has none."""
        data = await self._execute(_PAYMENT_STATUS, {"input": {"paymentHash": payment_hash}})
        result = data.get("lnInvoicePaymentStatusByHash") or {}
        return result.get("status") or PENDING
