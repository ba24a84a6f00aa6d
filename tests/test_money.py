from __future__ import annotations

import pytest

from mercato.services.money import apply_rate_bp, format_eur, prorate, split_gross_to_net_and_tax


def test_split_gross_to_net_and_tax_exact_20_percent() -> None:
    net, tax = split_gross_to_net_and_tax(gross_cents=120, tax_rate_bp=2000)
    assert net == 100
    assert tax == 20


@pytest.mark.parametrize("gross", [1, 2, 3, 10, 99, 119, 121, 199, 999, 10_001])
def test_split_gross_to_net_and_tax_invariant(gross: int) -> None:
    net, tax = split_gross_to_net_and_tax(gross_cents=gross, tax_rate_bp=2000)
    assert net + tax == gross
    assert net >= 0
    assert tax >= 0


def test_split_gross_to_net_and_tax_zero_rate() -> None:
    net, tax = split_gross_to_net_and_tax(gross_cents=12345, tax_rate_bp=0)
    assert net == 12345
    assert tax == 0


def test_apply_rate_bp_rounds_half_away_from_zero() -> None:
    assert apply_rate_bp(amount_cents=5000, rate_bp=1000) == 500
    assert apply_rate_bp(amount_cents=5, rate_bp=1000) == 1  # 0.5 -> 1
    assert apply_rate_bp(amount_cents=4, rate_bp=1000) == 0
    assert apply_rate_bp(amount_cents=-5, rate_bp=1000) == -1
    assert apply_rate_bp(amount_cents=-1234, rate_bp=2000) == -247

    with pytest.raises(ValueError):
        apply_rate_bp(amount_cents=100, rate_bp=-1)


def test_prorate_share_of_amount() -> None:
    assert prorate(amount_cents=650, part_cents=1000, whole_cents=6000) == 108
    assert prorate(amount_cents=650, part_cents=6000, whole_cents=6000) == 650
    assert prorate(amount_cents=3, part_cents=1, whole_cents=2) == 2
    assert prorate(amount_cents=100, part_cents=0, whole_cents=400) == 0

    with pytest.raises(ValueError):
        prorate(amount_cents=100, part_cents=500, whole_cents=400)
    with pytest.raises(ValueError):
        prorate(amount_cents=100, part_cents=0, whole_cents=0)


def test_format_eur() -> None:
    assert format_eur(0) == "0,00"
    assert format_eur(1) == "0,01"
    assert format_eur(10) == "0,10"
    assert format_eur(12345) == "123,45"
    assert format_eur(123456789) == "1.234.567,89"
    assert format_eur(-1) == "-0,01"
