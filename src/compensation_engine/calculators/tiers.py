"""Tiered/progressive schedule calculation.

A single algorithm backs both tiered pay components and progressive tax
brackets:

    for tier i with next tier i+1:
        slice = min(basis, threshold[i+1]) - threshold[i]   (if basis > threshold[i])
    last tier:
        slice = basis - threshold[last]
    contribution = slice * rate + fixed_amount

A basis at or below the first threshold yields zero.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from compensation_engine.types import ZERO, TaxBracket, Tier

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Convert a config value (int, float, str, Decimal) to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise InvalidOperation(f"Not a number: {value!r}")
    return Decimal(str(value))


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def coerce_tiers(raw: Any) -> list[Tier] | None:
    """Normalise raw tier configuration into sorted Tier objects.

    Returns None when the configuration is malformed.
    """
    if isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, Iterable):
        return None

    tiers: list[Tier] = []
    for entry in raw:
        if isinstance(entry, Tier):
            tiers.append(entry)
            continue
        if not isinstance(entry, Mapping) or "threshold" not in entry:
            return None
        try:
            tiers.append(
                Tier(
                    threshold=to_decimal(entry["threshold"]),
                    rate=to_decimal(entry.get("rate", 0)),
                    fixed_amount=to_decimal(entry.get("fixed_amount", 0)),
                )
            )
        except (InvalidOperation, ValueError, TypeError):
            return None

    return sorted(tiers, key=lambda t: t.threshold)


def calculate_tiered(tiers: Any, basis: Decimal) -> Decimal:
    """Apply a tiered schedule to a basis amount.

    Args:
        tiers: Tier objects or mappings with ``threshold``/``rate`` keys
            (and optional ``fixed_amount``), in any order.
        basis: The amount the schedule is applied against.

    Returns:
        The unrounded total; zero for an empty or malformed tier list.
    """
    ordered = coerce_tiers(tiers)
    if not ordered:
        return ZERO

    total = ZERO
    for i, tier in enumerate(ordered):
        if basis <= tier.threshold:
            break
        if i + 1 < len(ordered):
            upper = min(basis, ordered[i + 1].threshold)
        else:
            upper = basis
        taxed_slice = upper - tier.threshold
        if taxed_slice > 0:
            total += taxed_slice * tier.rate + tier.fixed_amount

    return total


def tiers_from_brackets(brackets: Iterable[TaxBracket]) -> list[Tier]:
    """Convert tax brackets (percentage rates) into tiers (decimal rates).

    ``income_max`` is implied by the next bracket's ``income_min``.
    """
    return [
        Tier(
            threshold=b.income_min,
            rate=b.rate_percentage / HUNDRED,
            fixed_amount=b.fixed_amount,
        )
        for b in sorted(brackets, key=lambda b: b.income_min)
    ]


def calculate_bracket_tax(basis: Decimal, brackets: Iterable[TaxBracket]) -> Decimal:
    """Progressive tax on a basis, rounded to cents."""
    if basis <= 0:
        return ZERO
    return round_to_cents(calculate_tiered(tiers_from_brackets(brackets), basis))


def calculate_flat_rate(
    basis: Decimal,
    brackets: list[TaxBracket],
    annual_cap: Decimal | None = None,
) -> Decimal:
    """Flat-rate tax using the first bracket's rate, optionally capped."""
    if basis <= 0 or not brackets:
        return ZERO

    rate = brackets[0].rate_percentage / HUNDRED
    tax = calculate_tiered([Tier(threshold=ZERO, rate=rate)], basis)
    if annual_cap is not None and tax > annual_cap:
        return round_to_cents(annual_cap)
    return round_to_cents(tax)
