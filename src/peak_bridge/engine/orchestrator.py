from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, Optional

import httpx

from peak_bridge.config.execution import ExecutionConfig
from peak_bridge.engine.account import AccountStateReader
from peak_bridge.engine.leverage import LeverageConfigurator
from peak_bridge.engine.orders import OrderPlacer, bracket_prices
from peak_bridge.engine.reconciler import PollPolicy, PositionReconciler, ReconcileResult
from peak_bridge.engine.sizing import compute_qty
from peak_bridge.errors import ExecutionError, InvalidSignal
from peak_bridge.exchange import BybitLinearClient
from peak_bridge.notifications.telegram import TelegramNotifier, format_failure, format_result
from peak_bridge.settings import Settings
from peak_bridge.types import (
    ExecutionResult,
    OrderAck,
    SizingResult,
    Side,
    StepFailure,
    TradeSignal,
)

logger = logging.getLogger("peak_bridge.orchestrator")

_QUOTE_ASSET = "USDT"


class SymbolLocks:
    """One asyncio.Lock per symbol.

    Executions for the same symbol run strictly one after another; different
    symbols never wait on each other. Locks are kept for the life of the
    process; the set of traded symbols is small and fixed.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, symbol: str) -> asyncio.Lock:
        key = symbol.upper()
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def locked(self, symbol: str) -> bool:
        lock = self._locks.get(symbol.upper())
        return lock is not None and lock.locked()


def _position_idx(*, side: Side, position_mode: Optional[str]) -> int:
    if position_mode != "hedge":
        return 0
    return 1 if side == "Buy" else 2


class ExecutionOrchestrator:
    def __init__(
        self,
        *,
        client: BybitLinearClient,
        config: ExecutionConfig,
        account_type: str = "UNIFIED",
        notifier: TelegramNotifier | None = None,
        locks: SymbolLocks | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        owns_client: bool = False,
    ) -> None:
        self._client = client
        self._config = config
        self._account_type = account_type
        self._notifier = notifier
        self._locks = locks if locks is not None else SymbolLocks()
        self._owns_client = owns_client
        self._reader = AccountStateReader(client=client)
        self._leverage = LeverageConfigurator(
            client=client,
            position_mode=config.exchange.position_mode,
        )
        self._reconciler = PositionReconciler(
            client=client,
            reader=self._reader,
            poll_policy=PollPolicy(
                interval_seconds=config.reconcile.poll_interval_seconds,
                max_attempts=config.reconcile.poll_max_attempts,
                deadline_seconds=config.reconcile.poll_deadline_seconds,
            ),
            sleep=sleep,
        )
        self._placer = OrderPlacer(client=client)

    @property
    def locks(self) -> SymbolLocks:
        return self._locks

    async def aclose(self) -> None:
        if not self._owns_client:
            return
        if self._notifier is not None:
            await self._notifier.aclose()
        await self._client.aclose()

    async def execute(self, signal: TradeSignal) -> ExecutionResult:
        """Run one signal to a terminal outcome.

        Holds the symbol's lock from the balance read until the entry order is
        acknowledged, so two signals for one symbol never interleave.
        """
        logger.info(
            "execution_started",
            extra={
                "symbol": signal.symbol,
                "side": signal.side,
                "leverage": signal.leverage,
            },
        )
        try:
            leverage = self._resolve_leverage(signal)
            async with self._locks.lock(signal.symbol):
                result = await self._execute_locked(signal=signal, leverage=leverage)
        except ExecutionError as e:
            logger.error(
                "execution_failed",
                extra={"symbol": signal.symbol, "side": signal.side, "kind": e.kind},
            )
            await self._safe_notify(message=format_failure(signal, e), symbol=signal.symbol)
            raise

        logger.info(
            "execution_finished",
            extra={
                "symbol": signal.symbol,
                "side": signal.side,
                "qty": str(result.qty),
                "order_id": result.ack.order_id,
                "state": result.reconcile_state,
            },
        )
        await self._safe_notify(message=format_result(result), symbol=signal.symbol)
        return result

    def _resolve_leverage(self, signal: TradeSignal) -> int:
        sizing = self._config.sizing
        leverage = signal.leverage if signal.leverage is not None else sizing.default_leverage
        if leverage < 1 or leverage > sizing.max_leverage:
            raise InvalidSignal(
                f"leverage {leverage} outside [1, {sizing.max_leverage}]",
                symbol=signal.symbol,
            )
        return leverage

    async def _execute_locked(self, *, signal: TradeSignal, leverage: int) -> ExecutionResult:
        sizing_cfg = self._config.sizing
        bracket_cfg = self._config.bracket

        balance = await self._reader.get_balance(
            account_type=self._account_type,
            asset=_QUOTE_ASSET,
        )
        sizing = compute_qty(
            balance=balance.available,
            margin_fraction=sizing_cfg.margin_fraction,
            leverage=leverage,
            price=signal.reference_price,
            min_qty=sizing_cfg.min_qty,
            max_qty=sizing_cfg.max_qty,
            min_notional=sizing_cfg.min_notional,
            qty_step=sizing_cfg.qty_step,
            rounding=sizing_cfg.rounding,
        )
        logger.info(
            "qty_computed",
            extra={
                "symbol": signal.symbol,
                "qty": str(sizing.qty),
                "leverage": leverage,
                "state": "min_notional" if sizing.min_notional_applied else "sized",
            },
        )
        take_profit, stop_loss = bracket_prices(
            direction=signal.direction,
            reference_price=signal.reference_price,
            take_profit_pct=bracket_cfg.take_profit_pct,
            stop_loss_pct=bracket_cfg.stop_loss_pct,
            price_tick=bracket_cfg.price_tick,
            take_profit=signal.take_profit,
            stop_loss=signal.stop_loss,
        )

        failures = await self._leverage.configure(symbol=signal.symbol, leverage=leverage)
        warnings = _advisory_only(failures)

        # Past this point the exchange state changes; finish the unit even if
        # the caller goes away.
        task = asyncio.ensure_future(
            self._reconcile_and_place(
                signal=signal,
                qty=sizing.qty,
                take_profit=take_profit,
                stop_loss=stop_loss,
            )
        )
        try:
            reconcile, ack = await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning("execution_cancel_deferred", extra={"symbol": signal.symbol})
            # The symbol lock is released only once the unit is done.
            await _wait_ignoring_cancellation(task)
            if task.cancelled():
                raise
            if task.exception() is not None:
                logger.error(
                    "execution_failed_after_cancel",
                    exc_info=task.exception(),
                    extra={"symbol": signal.symbol},
                )
                raise
            reconcile, ack = task.result()
            result = _build_result(
                signal=signal,
                leverage=leverage,
                sizing=sizing,
                take_profit=take_profit,
                stop_loss=stop_loss,
                reconcile=reconcile,
                ack=ack,
                warnings=warnings,
            )
            logger.warning(
                "order_placed_after_cancel",
                extra={
                    "symbol": signal.symbol,
                    "side": signal.side,
                    "qty": str(result.qty),
                    "order_id": ack.order_id,
                    "state": result.reconcile_state,
                },
            )
            await self._safe_notify(message=format_result(result), symbol=signal.symbol)
            raise

        return _build_result(
            signal=signal,
            leverage=leverage,
            sizing=sizing,
            take_profit=take_profit,
            stop_loss=stop_loss,
            reconcile=reconcile,
            ack=ack,
            warnings=warnings,
        )

    async def _reconcile_and_place(
        self,
        *,
        signal: TradeSignal,
        qty: Decimal,
        take_profit: Decimal,
        stop_loss: Decimal,
    ) -> tuple[ReconcileResult, OrderAck]:
        reconcile = await self._reconciler.reconcile(symbol=signal.symbol, side=signal.side)
        ack = await self._placer.place(
            symbol=signal.symbol,
            side=signal.side,
            qty=qty,
            take_profit=take_profit,
            stop_loss=stop_loss,
            position_idx=_position_idx(
                side=signal.side,
                position_mode=self._config.exchange.position_mode,
            ),
        )
        return reconcile, ack

    async def _safe_notify(self, *, message: str, symbol: str) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.send(message)
        except Exception:
            logger.exception("notify_failed", extra={"symbol": symbol})


async def _wait_ignoring_cancellation(task: asyncio.Future) -> None:
    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            continue


def _build_result(
    *,
    signal: TradeSignal,
    leverage: int,
    sizing: SizingResult,
    take_profit: Decimal,
    stop_loss: Decimal,
    reconcile: ReconcileResult,
    ack: OrderAck,
    warnings: list[StepFailure],
) -> ExecutionResult:
    return ExecutionResult(
        signal=signal,
        qty=sizing.qty,
        leverage=leverage,
        take_profit=take_profit,
        stop_loss=stop_loss,
        sizing=sizing,
        reconcile_state=reconcile.state.value,
        ack=ack,
        warnings=(*warnings, *reconcile.failed_cancellations),
    )


def _advisory_only(failures: list[StepFailure]) -> list[StepFailure]:
    for f in failures:
        if f.severity == "fatal":
            raise ExecutionError(f"{f.step} failed: {f.reason}")
    return list(failures)


def build_orchestrator(
    *,
    settings: Settings,
    config: ExecutionConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ExecutionOrchestrator:
    client = BybitLinearClient(
        api_key=settings.bybit_api_key,
        api_secret=settings.bybit_api_secret,
        base_url=settings.base_url(),
        category=config.exchange.category,
        timeout_seconds=config.exchange.timeout_seconds,
        recv_window_ms=config.exchange.recv_window_ms,
        transport=transport,
    )
    notifier = TelegramNotifier(
        bot_token=settings.telegram_bot_token,
        chat_id=settings.telegram_chat_id,
    )
    return ExecutionOrchestrator(
        client=client,
        config=config,
        account_type=settings.account_type,
        notifier=notifier,
        owns_client=True,
    )
