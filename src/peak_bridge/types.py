from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

Side = Literal["Buy", "Sell"]
Severity = Literal["fatal", "advisory"]


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def side(self) -> Side:
        return "Buy" if self is Direction.LONG else "Sell"


def opposite_side(side: Side) -> Side:
    return "Sell" if side == "Buy" else "Buy"


def plain(value: Decimal) -> str:
    # Bybit rejects exponent notation ("1E+1") in numeric string fields.
    return format(value.normalize(), "f")


@dataclass(frozen=True)
class TradeSignal:
    direction: Direction
    symbol: str
    reference_price: Decimal
    leverage: int | None = None
    take_profit: Decimal | None = None
    stop_loss: Decimal | None = None
    event: str = ""

    @property
    def side(self) -> Side:
        return self.direction.side


@dataclass(frozen=True)
class AccountBalance:
    asset: str
    available: Decimal
    source: str


@dataclass(frozen=True)
class Position:
    symbol: str
    side: Side
    size: Decimal
    position_idx: int = 0


@dataclass(frozen=True)
class OpenOrder:
    order_id: str
    symbol: str
    side: str = ""
    order_type: str = ""
    reduce_only: bool = False


@dataclass(frozen=True)
class SizingResult:
    qty: Decimal
    margin_used: Decimal
    position_value: Decimal
    notional: Decimal
    min_notional_applied: bool = False


@dataclass(frozen=True)
class BracketOrder:
    symbol: str
    side: Side
    qty: Decimal
    take_profit: Decimal | None = None
    stop_loss: Decimal | None = None
    reduce_only: bool = False
    position_idx: int = 0
    time_in_force: Literal["GTC", "IOC"] = "GTC"
    order_type: Literal["Market"] = "Market"

    def to_payload(self, *, category: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "category": category,
            "symbol": self.symbol,
            "side": self.side,
            "orderType": self.order_type,
            "qty": plain(self.qty),
            "timeInForce": self.time_in_force,
            "positionIdx": self.position_idx,
            "reduceOnly": self.reduce_only,
        }
        if self.take_profit is not None or self.stop_loss is not None:
            payload["tpslMode"] = "Full"
        if self.take_profit is not None:
            payload["takeProfit"] = plain(self.take_profit)
        if self.stop_loss is not None:
            payload["stopLoss"] = plain(self.stop_loss)
        return payload


@dataclass(frozen=True)
class OrderAck:
    order_id: str
    order_link_id: str
    raw: dict[str, Any]


@dataclass(frozen=True)
class StepFailure:
    """A failed side step; `advisory` failures never abort an execution."""

    step: str
    severity: Severity
    reason: str

    def to_payload(self) -> dict[str, str]:
        return {"step": self.step, "severity": self.severity, "reason": self.reason}


@dataclass(frozen=True)
class ExecutionResult:
    signal: TradeSignal
    qty: Decimal
    leverage: int
    take_profit: Decimal
    stop_loss: Decimal
    sizing: SizingResult
    reconcile_state: str
    ack: OrderAck
    warnings: tuple[StepFailure, ...] = field(default_factory=tuple)

    @property
    def side(self) -> Side:
        return self.signal.side

    def to_payload(self) -> dict[str, Any]:
        return {
            "ok": True,
            "message": (
                f"Opened {self.side} {self.signal.symbol} @ {plain(self.signal.reference_price)}"
            ),
            "qty": plain(self.qty),
            "leverage": self.leverage,
            "tp": plain(self.take_profit),
            "sl": plain(self.stop_loss),
            "reconcile": self.reconcile_state,
            "warnings": [w.to_payload() for w in self.warnings],
            "bybitResponse": self.ack.raw,
        }
