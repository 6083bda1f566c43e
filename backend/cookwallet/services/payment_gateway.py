# Overview: Mobile-money transfer gateway contract and the default Flutterwave HTTP adapter.

"""
Payment Gateway

WHY: Withdrawals and payout retries push money out through an external
mobile-money transfer API. Services depend only on PaymentGateway; the
concrete adapter is installed in app.extensions["payment_gateway"] and can be
swapped (tests, another provider).

CONTRACT:
- initiate_transfer never raises for provider or network problems; it returns
  a failed TransferResult (is_timeout=True when the call timed out)
- idempotency_key is sent unchanged on every attempt for the same payout, so
  the provider can collapse a retried transfer that already went through
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from flask import current_app


TRANSFER_SUCCESS = "success"
TRANSFER_FAILED = "failed"

# Flutterwave mobile-money "bank" codes for Cameroon
PROVIDER_BANK_CODES = {
    "mtn_momo": "MPS",
    "mtn_mobile_money": "MPS",
    "orange_money": "FMM",
}


@dataclass
class TransferResult:
    status: str
    provider_reference: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    is_timeout: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == TRANSFER_SUCCESS


class PaymentGateway:
    """Outbound transfer contract consumed by withdrawals and payout retries."""

    def initiate_transfer(
        self,
        amount: int,
        currency: str,
        destination_account: str,
        idempotency_key: str,
        provider: str | None = None,
        narration: str | None = None,
    ) -> TransferResult:
        raise NotImplementedError


class FlutterwaveGateway(PaymentGateway):
    """
    Flutterwave v3 transfers over httpx.

    The idempotency key doubles as the transfer reference, so a webhook for
    the transfer can be matched back to its withdrawal / payout task.
    """

    def __init__(self, base_url: str, secret_key: str, timeout: float = 30.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self, idempotency_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "X-Idempotency-Key": idempotency_key,
        }

    def initiate_transfer(
        self,
        amount: int,
        currency: str,
        destination_account: str,
        idempotency_key: str,
        provider: str | None = None,
        narration: str | None = None,
    ) -> TransferResult:
        payload = {
            "account_bank": PROVIDER_BANK_CODES.get(provider or "", "MPS"),
            "account_number": destination_account,
            "amount": amount,
            "currency": currency,
            "reference": idempotency_key,
            "narration": narration or f"Payout - {amount:,} {currency}",
            "debit_currency": currency,
        }

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    f"{self.base_url}/transfers",
                    json=payload,
                    headers=self._headers(idempotency_key),
                )
        except httpx.TimeoutException as exc:
            current_app.logger.warning("Transfer %s timed out: %s", idempotency_key, exc)
            return TransferResult(
                status=TRANSFER_FAILED,
                error="Connection timeout",
                is_timeout=True,
                raw_response={"reference": idempotency_key},
            )
        except httpx.HTTPError as exc:
            current_app.logger.warning("Transfer %s transport error: %s", idempotency_key, exc)
            return TransferResult(
                status=TRANSFER_FAILED,
                error=f"Transport error: {exc.__class__.__name__}",
                raw_response={"reference": idempotency_key},
            )

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:2000]}

        if not isinstance(body, dict):
            body = {"raw": body}
        data = body.get("data")
        data = data if isinstance(data, dict) else {}

        if response.status_code < 400 and body.get("status") == "success":
            transfer_id = data.get("id")
            return TransferResult(
                status=TRANSFER_SUCCESS,
                provider_reference=str(transfer_id) if transfer_id is not None else None,
                raw_response=body,
            )

        error = body.get("message")
        current_app.logger.warning(
            "Transfer %s rejected (HTTP %s): %s", idempotency_key, response.status_code, error
        )
        return TransferResult(
            status=TRANSFER_FAILED,
            error=error or f"HTTP {response.status_code}",
            raw_response=body,
        )


def build_gateway(config) -> PaymentGateway:
    return FlutterwaveGateway(
        base_url=config["GATEWAY_BASE_URL"],
        secret_key=config["GATEWAY_SECRET_KEY"],
        timeout=float(config["GATEWAY_TIMEOUT_SECONDS"]),
    )


def get_gateway() -> PaymentGateway:
    gateway = current_app.extensions.get("payment_gateway")
    if gateway is None:
        gateway = build_gateway(current_app.config)
        current_app.extensions["payment_gateway"] = gateway
    return gateway
