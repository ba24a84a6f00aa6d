from __future__ import annotations

import pytest

from mercato.core.enums import OrderStatus, PaymentStatus
from mercato.services.order_status import aggregate_order_status, can_transition
from mercato.services.payment_status import buyer_message, is_terminal, map_provider_status, sanitize_error_message


S = OrderStatus


@pytest.mark.parametrize(
    ("current", "new", "allowed"),
    [
        (S.NEW, S.PAID, True),
        (S.NEW, S.SHIPPED, False),
        (S.PAID, S.PREPARING, True),
        (S.PREPARING, S.SHIPPED, True),
        (S.SHIPPED, S.DELIVERED, True),
        (S.SHIPPED, S.CANCELLED, False),
        (S.DELIVERED, S.REFUNDED, True),
        (S.DELIVERED, S.PAID, False),
        (S.CANCELLED, S.PAID, False),
        (S.REFUNDED, S.REFUNDED, True),
    ],
)
def test_can_transition(current: OrderStatus, new: OrderStatus, allowed: bool) -> None:
    assert can_transition(current, new) is allowed


def test_aggregate_order_status_uniform_and_mixed() -> None:
    assert aggregate_order_status([]) == S.NEW
    assert aggregate_order_status([S.PAID, S.PAID]) == S.PAID
    assert aggregate_order_status([S.DELIVERED, S.DELIVERED]) == S.DELIVERED
    assert aggregate_order_status([S.DELIVERED, S.PREPARING]) == S.SHIPPED
    assert aggregate_order_status([S.PAID, S.PREPARING]) == S.PREPARING
    assert aggregate_order_status([S.PAID, S.CANCELLED]) == S.PAID
    assert aggregate_order_status([S.CANCELLED, S.REFUNDED]) == S.CANCELLED
    assert aggregate_order_status([S.REFUNDED, S.REFUNDED]) == S.REFUNDED


def test_map_provider_status_per_provider_vocabulary() -> None:
    assert map_provider_status("stripe", "succeeded") == PaymentStatus.COMPLETED
    assert map_provider_status("Stripe", "REQUIRES_CAPTURE") == PaymentStatus.AUTHORIZED
    assert map_provider_status("paypal", "denied") == PaymentStatus.FAILED
    assert map_provider_status("card", "captured") == PaymentStatus.COMPLETED
    assert map_provider_status("blik", "expired") == PaymentStatus.CANCELLED
    assert map_provider_status("cash_on_delivery", "collected") == PaymentStatus.COMPLETED
    # Unknown provider vocabulary falls back to our own names.
    assert map_provider_status("acme", "completed") == PaymentStatus.COMPLETED

    with pytest.raises(ValueError):
        map_provider_status("stripe", "teleported")


def test_buyer_message_and_terminal_statuses() -> None:
    assert "successful" in buyer_message(PaymentStatus.COMPLETED)
    assert is_terminal(PaymentStatus.FAILED)
    assert is_terminal(PaymentStatus.REFUNDED)
    assert not is_terminal(PaymentStatus.AUTHORIZED)
    assert not is_terminal(PaymentStatus.PENDING)


def test_sanitize_error_message_redacts_sensitive_data() -> None:
    assert sanitize_error_message(None) is None
    assert sanitize_error_message("   ") is None
    cleaned = sanitize_error_message("Card 4111 1111 1111 1111 of jane@example.com declined")
    assert "4111" not in cleaned
    assert "jane@example.com" not in cleaned
    assert cleaned.endswith("[redacted] declined")
    assert "sk_live" not in sanitize_error_message("bad key sk_live_abc123XYZ")
    assert sanitize_error_message("Traceback (most recent call last): ...") == (
        "The payment provider reported an error. Please try again later."
    )
    assert len(sanitize_error_message("x" * 1000)) == 300
