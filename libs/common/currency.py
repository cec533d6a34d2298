"""Currency conversion utilities for the storefront.

Internal wallet unit: GCoin (integer, never fractional).
Provider / display unit: PRICE_CURRENCY (Decimal with two places, e.g. USD).

Conversion chain
----------------
GCoins × GCOIN_UNIT_PRICE → fiat amount
fiat amount ÷ GCOIN_UNIT_PRICE → GCoins (floor)
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from libs.common.config import get_settings

# ─── constants ───────────────────────────────────────────────────────────────

CENTS = Decimal("0.01")


def gcoin_unit_price() -> Decimal:
    """Price of a single GCoin in PRICE_CURRENCY."""
    return Decimal(get_settings().GCOIN_UNIT_PRICE)


# ─── conversion helpers ───────────────────────────────────────────────────────


def to_money(value) -> Decimal:
    """Normalise a number or numeric string to a two-place Decimal (half-up)."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def gcoins_to_fiat(gcoins: int) -> Decimal:
    """Convert GCoins to the provider currency amount charged for them."""
    return to_money(gcoin_unit_price() * gcoins)


def fiat_to_gcoins(amount) -> int:
    """Convert a fiat amount to whole GCoins (floor)."""
    coins = (Decimal(str(amount)) / gcoin_unit_price()).to_integral_value(
        rounding=ROUND_DOWN
    )
    return int(coins)
