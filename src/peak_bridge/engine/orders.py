from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from peak_bridge.errors import InvalidSignal, OrderRejected
from peak_bridge.exchange import BybitLinearClient
from peak_bridge.types import BracketOrder, Direction, OrderAck, Side

logger = logging.getLogger("peak_bridge.orders")

_HUNDRED = Decimal("100")


def _quantize_to_tick(price: Decimal, tick: Decimal) -> Decimal:
    if tick <= 0:
        return price
    return (price / tick).to_integral_value(rounding=ROUND_HALF_UP) * tick


def bracket_prices(
    *,
    direction: Direction,
    reference_price: Decimal,
    take_profit_pct: Decimal,
    stop_loss_pct: Decimal,
    price_tick: Decimal,
    take_profit: Decimal | None = None,
    stop_loss: Decimal | None = None,
) -> tuple[Decimal, Decimal]:
    """Resolve (take_profit, stop_loss) for an entry at `reference_price`.

    Explicit levels win; missing ones come from the percentage offsets. Long
    brackets must satisfy tp > reference > sl, short brackets the inverse.
    """
    if direction is Direction.LONG:
        tp = take_profit if take_profit is not None else (
            reference_price * (1 + take_profit_pct / _HUNDRED)
        )
        sl = stop_loss if stop_loss is not None else (
            reference_price * (1 - stop_loss_pct / _HUNDRED)
        )
    else:
        tp = take_profit if take_profit is not None else (
            reference_price * (1 - take_profit_pct / _HUNDRED)
        )
        sl = stop_loss if stop_loss is not None else (
            reference_price * (1 + stop_loss_pct / _HUNDRED)
        )

    tp = _quantize_to_tick(tp, price_tick)
    sl = _quantize_to_tick(sl, price_tick)

    if direction is Direction.LONG:
        valid = tp > reference_price > sl > 0
    else:
        valid = sl > reference_price > tp > 0
    if not valid:
        raise InvalidSignal(
            f"{direction.value} bracket tp={tp} sl={sl} is inconsistent "
            f"with reference price {reference_price}"
        )
    return tp, sl


class OrderPlacer:
    def __init__(self, *, client: BybitLinearClient) -> None:
        self._client = client

    async def place(
        self,
        *,
        symbol: str,
        side: Side,
        qty: Decimal,
        take_profit: Decimal,
        stop_loss: Decimal,
        position_idx: int = 0,
    ) -> OrderAck:
        order = BracketOrder(
            symbol=symbol,
            side=side,
            qty=qty,
            take_profit=take_profit,
            stop_loss=stop_loss,
            reduce_only=False,
            position_idx=position_idx,
        )
        payload = order.to_payload(category=self._client.category)
        resp = await self._client.create_order(payload=payload)
        if not resp.ok:
            raise OrderRejected(
                f"Order rejected: {resp.ret_msg} (retCode={resp.ret_code})",
                symbol=symbol,
                ret_code=resp.ret_code,
                ret_msg=resp.ret_msg,
                payload=resp.raw,
            )
        ack = OrderAck(
            order_id=str(resp.result.get("orderId", "")),
            order_link_id=str(resp.result.get("orderLinkId", "")),
            raw=resp.raw,
        )
        logger.info(
            "order_placed",
            extra={"symbol": symbol, "side": side, "qty": str(qty), "order_id": ack.order_id},
        )
        return ack
