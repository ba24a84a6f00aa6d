from __future__ import annotations


def split_gross_to_net_and_tax(*, gross_cents: int, tax_rate_bp: int) -> tuple[int, int]:
    """
    Integer-only VAT split of a gross amount.

    tax_rate_bp: basis points (e.g. 2000 = 20%).
    """
    if gross_cents < 0:
        raise ValueError("gross_cents must be >= 0")
    if tax_rate_bp < 0:
        raise ValueError("tax_rate_bp must be >= 0")

    if tax_rate_bp == 0:
        return gross_cents, 0

    den = 10_000 + tax_rate_bp
    net = (gross_cents * 10_000 + den // 2) // den
    tax = gross_cents - net
    return net, tax


def apply_rate_bp(*, amount_cents: int, rate_bp: int) -> int:
    """`amount * rate`, rounded half away from zero."""
    if rate_bp < 0:
        raise ValueError("rate_bp must be >= 0")
    sign = -1 if amount_cents < 0 else 1
    return sign * ((abs(amount_cents) * rate_bp + 5_000) // 10_000)


def prorate(*, amount_cents: int, part_cents: int, whole_cents: int) -> int:
    """Share of `amount_cents` that `part_cents` represents of `whole_cents`, rounded half up."""
    if whole_cents <= 0:
        raise ValueError("whole_cents must be > 0")
    if part_cents < 0 or part_cents > whole_cents:
        raise ValueError("part_cents must be within 0..whole_cents")
    return (amount_cents * part_cents * 2 + whole_cents) // (whole_cents * 2)


def format_eur(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents_abs = abs(cents)
    euros = cents_abs // 100
    rest = cents_abs % 100
    return f"{sign}{euros:,}".replace(",", ".") + f",{rest:02d}"
