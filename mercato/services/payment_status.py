from __future__ import annotations

import re

from mercato.core.enums import PaymentStatus


_P = PaymentStatus

# Provider status vocabulary, lower-cased.
_PROVIDER_STATUS_MAP: dict[str, dict[str, PaymentStatus]] = {
    "stripe": {
        "requires_payment_method": _P.PENDING,
        "requires_confirmation": _P.PENDING,
        "requires_action": _P.PENDING,
        "processing": _P.PENDING,
        "requires_capture": _P.AUTHORIZED,
        "succeeded": _P.COMPLETED,
        "canceled": _P.CANCELLED,
        "payment_failed": _P.FAILED,
        "failed": _P.FAILED,
        "refunded": _P.REFUNDED,
    },
    "paypal": {
        "created": _P.PENDING,
        "saved": _P.PENDING,
        "payer_action_required": _P.PENDING,
        "pending": _P.PENDING,
        "approved": _P.AUTHORIZED,
        "completed": _P.COMPLETED,
        "voided": _P.CANCELLED,
        "declined": _P.FAILED,
        "denied": _P.FAILED,
        "failed": _P.FAILED,
        "refunded": _P.REFUNDED,
    },
    "card": {
        "pending": _P.PENDING,
        "3ds_required": _P.PENDING,
        "authorized": _P.AUTHORIZED,
        "captured": _P.COMPLETED,
        "settled": _P.COMPLETED,
        "declined": _P.FAILED,
        "error": _P.FAILED,
        "voided": _P.CANCELLED,
        "refunded": _P.REFUNDED,
    },
    "bank_transfer": {
        "pending": _P.PENDING,
        "awaiting_transfer": _P.PENDING,
        "received": _P.COMPLETED,
        "completed": _P.COMPLETED,
        "rejected": _P.FAILED,
        "returned": _P.FAILED,
        "expired": _P.CANCELLED,
        "cancelled": _P.CANCELLED,
    },
    "blik": {
        "pending": _P.PENDING,
        "waiting_for_confirmation": _P.PENDING,
        "success": _P.COMPLETED,
        "confirmed": _P.COMPLETED,
        "rejected": _P.FAILED,
        "failure": _P.FAILED,
        "expired": _P.CANCELLED,
        "cancelled": _P.CANCELLED,
    },
    "cash_on_delivery": {
        "pending_delivery": _P.AUTHORIZED,
        "authorized": _P.AUTHORIZED,
        "collected": _P.COMPLETED,
        "refused": _P.FAILED,
        "cancelled": _P.CANCELLED,
    },
}

_BUYER_MESSAGES: dict[PaymentStatus, str] = {
    _P.PENDING: "Your payment is being processed.",
    _P.AUTHORIZED: "Your payment has been authorized and will be collected shortly.",
    _P.COMPLETED: "Thank you! Your payment was successful.",
    _P.FAILED: "Your payment could not be completed. Please try again or choose another payment method.",
    _P.CANCELLED: "Your payment was cancelled.",
    _P.REFUNDED: "Your payment has been refunded.",
}

TERMINAL_PAYMENT_STATUSES = frozenset({_P.COMPLETED, _P.FAILED, _P.CANCELLED, _P.REFUNDED})

_GENERIC_ERROR = "The payment provider reported an error. Please try again later."
_CARD_NUMBER_RE = re.compile(r"\b(?:\d[ -]?){13,19}\b")
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_SECRET_RE = re.compile(r"\b(?:sk|pk|rk)_(?:live|test)_[A-Za-z0-9]+\b")
_TECHNICAL_MARKERS = ("traceback", "exception", "stack", "sql", "connection", "timeout", "errno")


def map_provider_status(provider: str, status: str) -> PaymentStatus:
    """Translate a provider status string; unknown providers must use our own status names."""
    key = status.strip().lower()
    mapping = _PROVIDER_STATUS_MAP.get(provider.strip().lower())
    if mapping is not None and key in mapping:
        return mapping[key]
    try:
        return PaymentStatus(key.upper())
    except ValueError:
        raise ValueError(f"Unknown payment status '{status}' for provider '{provider}'") from None


def buyer_message(status: PaymentStatus) -> str:
    return _BUYER_MESSAGES[status]


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL_PAYMENT_STATUSES


def sanitize_error_message(message: str | None) -> str | None:
    """Make a provider error safe to store and show: no card numbers, e-mails, keys or internals."""
    if message is None:
        return None
    text = " ".join(message.split())
    if not text:
        return None
    if any(marker in text.lower() for marker in _TECHNICAL_MARKERS):
        return _GENERIC_ERROR
    text = _CARD_NUMBER_RE.sub("[redacted]", text)
    text = _EMAIL_RE.sub("[redacted]", text)
    text = _SECRET_RE.sub("[redacted]", text)
    return text[:300]
