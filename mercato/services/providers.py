from __future__ import annotations

import hashlib
import hmac
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from mercato.core.config import Settings, get_settings


@dataclass(frozen=True)
class InitiatedPayment:
    provider_transaction_id: str
    redirect_url: str | None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderResult:
    success: bool
    reference: str | None = None
    error: str | None = None


class PaymentProvider(ABC):
    """Port to the external payment gateway; also moves payouts to sellers."""

    name = "abstract"

    @abstractmethod
    async def initiate_payment(
        self,
        *,
        method: str,
        reference: str,
        amount_cents: int,
        currency_code: str,
        return_url: str,
    ) -> InitiatedPayment: ...

    @abstractmethod
    def verify_callback(self, *, body: bytes, signature: str | None) -> bool: ...

    @abstractmethod
    async def refund_payment(
        self,
        *,
        provider_transaction_id: str,
        amount_cents: int,
        currency_code: str,
        reference: str,
    ) -> ProviderResult: ...

    @abstractmethod
    async def send_payout(
        self,
        *,
        method_kind: str,
        account_ref: str,
        account_holder: str,
        amount_cents: int,
        currency_code: str,
        reference: str,
    ) -> ProviderResult: ...


class MockPaymentProvider(PaymentProvider):
    """In-process provider for development and tests. Failures are switched on per operation."""

    name = "mock"

    def __init__(
        self,
        *,
        fail_initiate: bool = False,
        fail_refunds: bool = False,
        fail_payouts: bool = False,
        raise_on_payout: bool = False,
        reject_callbacks: bool = False,
    ) -> None:
        self.fail_initiate = fail_initiate
        self.fail_refunds = fail_refunds
        self.fail_payouts = fail_payouts
        self.raise_on_payout = raise_on_payout
        self.reject_callbacks = reject_callbacks
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def initiate_payment(self, *, method, reference, amount_cents, currency_code, return_url) -> InitiatedPayment:
        self.calls.append(("initiate_payment", {"method": method, "reference": reference, "amount_cents": amount_cents}))
        if self.fail_initiate:
            raise ValueError("Payment provider unavailable")
        tx_id = f"mock_{uuid.uuid4().hex[:16]}"
        return InitiatedPayment(
            provider_transaction_id=tx_id,
            redirect_url=f"https://pay.mock.local/checkout/{tx_id}?return={return_url}",
            metadata={"method": method},
        )

    def verify_callback(self, *, body: bytes, signature: str | None) -> bool:
        return not self.reject_callbacks

    async def refund_payment(self, *, provider_transaction_id, amount_cents, currency_code, reference) -> ProviderResult:
        self.calls.append(("refund_payment", {"provider_transaction_id": provider_transaction_id, "amount_cents": amount_cents}))
        if self.fail_refunds:
            return ProviderResult(success=False, error="Refund declined by provider")
        return ProviderResult(success=True, reference=f"mock_rf_{uuid.uuid4().hex[:12]}")

    async def send_payout(
        self, *, method_kind, account_ref, account_holder, amount_cents, currency_code, reference
    ) -> ProviderResult:
        self.calls.append(("send_payout", {"reference": reference, "amount_cents": amount_cents}))
        if self.raise_on_payout:
            raise RuntimeError("Payout provider connection reset")
        if self.fail_payouts:
            return ProviderResult(success=False, error="Payout rejected by provider")
        return ProviderResult(success=True, reference=f"mock_po_{uuid.uuid4().hex[:12]}")


class HttpPaymentProvider(PaymentProvider):
    """JSON-over-HTTPS gateway adapter."""

    name = "http"

    def __init__(self, *, base_url: str, api_key: str | None, timeout_seconds: float) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = httpx.Timeout(timeout=timeout_seconds)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any], *, idempotency_key: str) -> dict[str, Any]:
        headers = {**self._headers(), "Idempotency-Key": idempotency_key}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(f"{self.base_url}{path}", json=payload, headers=headers)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise RuntimeError(f"Invalid payment provider payload from {path}")
        return data

    async def initiate_payment(self, *, method, reference, amount_cents, currency_code, return_url) -> InitiatedPayment:
        try:
            data = await self._post(
                "/payments",
                {
                    "method": method,
                    "reference": reference,
                    "amount": amount_cents,
                    "currency": currency_code,
                    "return_url": return_url,
                },
                idempotency_key=f"pay-{reference}",
            )
        except httpx.HTTPStatusError as e:
            raise ValueError(f"Payment provider rejected the payment ({e.response.status_code}): {e.response.text}") from e
        except httpx.HTTPError as e:
            raise ValueError(f"Payment provider unavailable: {e}") from e

        tx_id = str(data.get("id") or "").strip()
        if not tx_id:
            raise ValueError("Payment provider response missing 'id'")
        return InitiatedPayment(provider_transaction_id=tx_id, redirect_url=data.get("redirect_url"), metadata=data)

    def verify_callback(self, *, body: bytes, signature: str | None) -> bool:
        if not self.api_key:
            return False
        if not signature:
            return False
        expected = hmac.new(self.api_key.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    async def refund_payment(self, *, provider_transaction_id, amount_cents, currency_code, reference) -> ProviderResult:
        try:
            data = await self._post(
                f"/payments/{provider_transaction_id}/refunds",
                {"amount": amount_cents, "currency": currency_code, "reference": reference},
                idempotency_key=f"refund-{reference}",
            )
        except httpx.HTTPStatusError as e:
            return ProviderResult(success=False, error=f"HTTP {e.response.status_code}: {e.response.text[:500]}")
        except httpx.HTTPError as e:
            return ProviderResult(success=False, error=str(e) or e.__class__.__name__)
        return ProviderResult(success=True, reference=str(data.get("id") or "") or None)

    async def send_payout(
        self, *, method_kind, account_ref, account_holder, amount_cents, currency_code, reference
    ) -> ProviderResult:
        try:
            data = await self._post(
                "/payouts",
                {
                    "method": method_kind,
                    "account": account_ref,
                    "account_holder": account_holder,
                    "amount": amount_cents,
                    "currency": currency_code,
                    "reference": reference,
                },
                idempotency_key=f"payout-{reference}",
            )
        except httpx.HTTPStatusError as e:
            return ProviderResult(success=False, error=f"HTTP {e.response.status_code}: {e.response.text[:500]}")
        except httpx.HTTPError as e:
            return ProviderResult(success=False, error=str(e) or e.__class__.__name__)
        return ProviderResult(success=True, reference=str(data.get("id") or "") or None)


def get_payment_provider(settings: Settings | None = None) -> PaymentProvider:
    settings = settings or get_settings()
    if settings.payment_provider == "http":
        if not settings.payment_provider_base_url:
            raise ValueError("PAYMENT_PROVIDER=http requires PAYMENT_PROVIDER_BASE_URL")
        return HttpPaymentProvider(
            base_url=settings.payment_provider_base_url,
            api_key=settings.payment_provider_api_key,
            timeout_seconds=settings.payment_provider_timeout_seconds,
        )
    return MockPaymentProvider()
