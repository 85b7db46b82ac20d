from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_UP, Decimal
from typing import Literal

from peak_bridge.errors import SizingError
from peak_bridge.types import SizingResult

Rounding = Literal["down", "up"]


def _floor_to_step(quantity: Decimal, step: Decimal) -> Decimal:
    if step <= 0:
        return quantity
    steps = (quantity / step).to_integral_value(rounding=ROUND_DOWN)
    return steps * step


def _ceil_to_step(quantity: Decimal, step: Decimal) -> Decimal:
    if step <= 0:
        return quantity
    steps = (quantity / step).to_integral_value(rounding=ROUND_UP)
    return steps * step


def compute_qty(
    *,
    balance: Decimal,
    margin_fraction: Decimal,
    leverage: int,
    price: Decimal,
    min_qty: Decimal,
    max_qty: Decimal,
    min_notional: Decimal,
    qty_step: Decimal,
    rounding: Rounding = "down",
) -> SizingResult:
    """Size a market entry from the wallet balance.

    The raw quantity is clamped to ``[min_qty, max_qty]`` and rounded to
    ``qty_step`` in the ``rounding`` direction without leaving the bounds.
    If the notional then falls below ``min_notional`` the quantity becomes
    ``min_notional / price`` rounded *up* to the step, and sizing fails when
    that exceeds ``max_qty``.
    """
    if balance <= 0:
        raise SizingError(f"balance must be > 0, got {balance}")
    if not (Decimal("0") < margin_fraction <= Decimal("1")):
        raise SizingError(f"margin_fraction must be in (0, 1], got {margin_fraction}")
    if leverage < 1:
        raise SizingError(f"leverage must be >= 1, got {leverage}")
    if price <= 0:
        raise SizingError(f"price must be > 0, got {price}")
    if qty_step <= 0:
        raise SizingError(f"qty_step must be > 0, got {qty_step}")
    if min_qty <= 0 or min_qty > max_qty:
        raise SizingError(f"invalid quantity bounds [{min_qty}, {max_qty}]")

    margin_used = balance * margin_fraction
    position_value = margin_used * Decimal(leverage)
    qty = position_value / price

    qty = min(max(qty, min_qty), max_qty)
    if rounding == "up":
        qty = _ceil_to_step(qty, qty_step)
        if qty > max_qty:
            qty = _floor_to_step(max_qty, qty_step)
    else:
        qty = _floor_to_step(qty, qty_step)
        if qty < min_qty:
            qty = _ceil_to_step(min_qty, qty_step)

    min_notional_applied = False
    if qty * price < min_notional:
        qty = _ceil_to_step(min_notional / price, qty_step)
        min_notional_applied = True
        if qty > max_qty:
            raise SizingError(
                f"min notional {min_notional} at price {price} needs qty {qty} > max_qty {max_qty}"
            )

    if qty <= 0:
        raise SizingError(f"computed qty {qty} is not positive")

    return SizingResult(
        qty=qty,
        margin_used=margin_used,
        position_value=position_value,
        notional=qty * price,
        min_notional_applied=min_notional_applied,
    )
