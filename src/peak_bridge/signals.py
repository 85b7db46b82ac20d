from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict

from peak_bridge.errors import InvalidSignal
from peak_bridge.types import Direction, TradeSignal

Number = Union[str, int, float]


class SignalPayload(BaseModel):
    """Webhook body as sent by a TradingView alert."""

    model_config = ConfigDict(extra="ignore")

    secret: Optional[str] = None
    event: Optional[str] = None
    symbol: Optional[str] = None
    price: Optional[Number] = None
    lvg: Optional[Number] = None
    tp: Optional[Number] = None
    sl: Optional[Number] = None


def clean_symbol(symbol: str) -> str:
    # TradingView perpetual tickers look like "ETHUSDT.P" or "ETHUSDTPERP".
    return symbol.strip().upper().replace(".P", "").replace("PERP", "")


def parse_direction(event: str) -> Direction:
    text = event.upper()
    if "LONG" in text:
        return Direction.LONG
    if "SHORT" in text:
        return Direction.SHORT
    raise InvalidSignal(f"Invalid event: {event!r}")


def _decimal(value: Any, *, name: str) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise InvalidSignal(f"Field {name} is not a number: {value!r}") from e
    if not parsed.is_finite() or parsed <= 0:
        raise InvalidSignal(f"Field {name} must be a positive number, got {value!r}")
    return parsed


def _leverage(value: Any) -> Optional[int]:
    parsed = _decimal(value, name="lvg")
    if parsed is None:
        return None
    if parsed != parsed.to_integral_value():
        raise InvalidSignal(f"Field lvg must be a whole number, got {value!r}")
    return int(parsed)


def parse_signal(payload: SignalPayload) -> TradeSignal:
    if not payload.event or not payload.symbol:
        raise InvalidSignal("Missing fields")
    direction = parse_direction(payload.event)
    symbol = clean_symbol(payload.symbol)
    if not symbol:
        raise InvalidSignal(f"Invalid symbol: {payload.symbol!r}")
    price = _decimal(payload.price, name="price")
    if price is None:
        raise InvalidSignal("Missing field: price")
    return TradeSignal(
        direction=direction,
        symbol=symbol,
        reference_price=price,
        leverage=_leverage(payload.lvg),
        take_profit=_decimal(payload.tp, name="tp"),
        stop_loss=_decimal(payload.sl, name="sl"),
        event=payload.event,
    )
