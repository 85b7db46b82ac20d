from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from peak_bridge.engine.account import AccountStateReader
from peak_bridge.errors import FlipError, FlipTimeoutError, ProtocolError, TransportError
from peak_bridge.exchange import BybitLinearClient
from peak_bridge.types import BracketOrder, OpenOrder, Position, Side, StepFailure, opposite_side

logger = logging.getLogger("peak_bridge.reconciler")


class ReconcileState(str, Enum):
    START = "start"
    ORDERS_CANCELLED = "orders_cancelled"
    POSITION_CHECKED = "position_checked"
    FLAT = "flat"
    SAME_SIDE = "same_side"
    OPPOSITE_DETECTED = "opposite_detected"
    CLOSING = "closing"
    POLLING_FLAT = "polling_flat"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float = 1.0
    max_attempts: int = 10
    deadline_seconds: float = 15.0


@dataclass
class ReconcileResult:
    state: ReconcileState = ReconcileState.START
    path: list[ReconcileState] = field(default_factory=lambda: [ReconcileState.START])
    cancelled_order_ids: list[str] = field(default_factory=list)
    failed_cancellations: list[StepFailure] = field(default_factory=list)
    closed_position: Position | None = None
    poll_attempts: int = 0

    def advance(self, state: ReconcileState) -> None:
        self.state = state
        self.path.append(state)


class PositionReconciler:
    """Bring a symbol to a state where a new entry on `side` cannot conflict.

    Resting orders are cancelled (best-effort), an opposite position is closed
    with a reduce-only market order and the position is polled until it reads
    flat. Not observing flat within the poll policy fails closed.
    """

    def __init__(
        self,
        *,
        client: BybitLinearClient,
        reader: AccountStateReader,
        poll_policy: PollPolicy = PollPolicy(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._reader = reader
        self._poll_policy = poll_policy
        self._sleep = sleep
        self._clock = clock

    async def reconcile(self, *, symbol: str, side: Side) -> ReconcileResult:
        result = ReconcileResult()

        orders = await self._reader.get_open_orders(symbol=symbol)
        for order in orders:
            await self._cancel(order=order, result=result)
        result.advance(ReconcileState.ORDERS_CANCELLED)

        position = await self._reader.get_position(symbol=symbol)
        result.advance(ReconcileState.POSITION_CHECKED)

        if position is None:
            result.advance(ReconcileState.FLAT)
            logger.info("reconciled_flat", extra={"symbol": symbol, "state": result.state.value})
            return result

        if position.side == side:
            result.advance(ReconcileState.SAME_SIDE)
            logger.info(
                "reconciled_same_side",
                extra={"symbol": symbol, "side": side, "qty": str(position.size)},
            )
            return result

        result.advance(ReconcileState.OPPOSITE_DETECTED)
        logger.warning(
            "opposite_position_detected",
            extra={"symbol": symbol, "side": position.side, "qty": str(position.size)},
        )
        await self._close(position=position, result=result)
        await self._poll_flat(symbol=symbol, result=result)
        return result

    async def _cancel(self, *, order: OpenOrder, result: ReconcileResult) -> None:
        try:
            resp = await self._client.cancel_order(symbol=order.symbol, order_id=order.order_id)
        except (TransportError, ProtocolError) as e:
            reason = f"{type(e).__name__}: {e}"
        else:
            if resp.ok:
                result.cancelled_order_ids.append(order.order_id)
                logger.info(
                    "order_cancelled",
                    extra={"symbol": order.symbol, "order_id": order.order_id},
                )
                return
            reason = f"{resp.ret_msg} (retCode={resp.ret_code})"
        logger.warning(
            "order_cancel_failed",
            extra={"symbol": order.symbol, "order_id": order.order_id, "reason": reason},
        )
        result.failed_cancellations.append(
            StepFailure(step=f"cancel:{order.order_id}", severity="advisory", reason=reason)
        )

    async def _close(self, *, position: Position, result: ReconcileResult) -> None:
        result.advance(ReconcileState.CLOSING)
        close_order = BracketOrder(
            symbol=position.symbol,
            side=opposite_side(position.side),
            qty=position.size,
            reduce_only=True,
            position_idx=position.position_idx,
            time_in_force="IOC",
        )
        resp = await self._client.create_order(
            payload=close_order.to_payload(category=self._client.category)
        )
        if not resp.ok:
            raise FlipError(
                f"Closing {position.side} {position.size} {position.symbol} rejected: "
                f"{resp.ret_msg} (retCode={resp.ret_code})",
                symbol=position.symbol,
                ret_code=resp.ret_code,
                ret_msg=resp.ret_msg,
            )
        result.closed_position = position
        logger.info(
            "close_order_placed",
            extra={
                "symbol": position.symbol,
                "side": close_order.side,
                "qty": str(close_order.qty),
                "order_id": str(resp.result.get("orderId", "")),
            },
        )

    async def _poll_flat(self, *, symbol: str, result: ReconcileResult) -> None:
        result.advance(ReconcileState.POLLING_FLAT)
        policy = self._poll_policy
        started = self._clock()
        for attempt in range(1, policy.max_attempts + 1):
            result.poll_attempts = attempt
            position = await self._reader.get_position(symbol=symbol)
            if position is None:
                result.advance(ReconcileState.FLAT)
                logger.info(
                    "position_flat",
                    extra={"symbol": symbol, "attempt": attempt, "state": result.state.value},
                )
                return
            logger.info(
                "waiting_for_flat",
                extra={"symbol": symbol, "attempt": attempt, "qty": str(position.size)},
            )
            if attempt >= policy.max_attempts:
                break
            if self._clock() - started + policy.interval_seconds > policy.deadline_seconds:
                break
            await self._sleep(policy.interval_seconds)

        result.advance(ReconcileState.TIMED_OUT)
        logger.error(
            "flip_timeout",
            extra={"symbol": symbol, "attempt": result.poll_attempts, "state": result.state.value},
        )
        raise FlipTimeoutError(
            f"{symbol} did not report flat after {result.poll_attempts} checks; "
            "refusing to open a new position",
            symbol=symbol,
        )
