from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from peak_bridge.errors import BalanceError, ExchangeError
from peak_bridge.exchange import BybitLinearClient
from peak_bridge.types import AccountBalance, OpenOrder, Position, Side

logger = logging.getLogger("peak_bridge.account")

# Preference order for the spendable balance of a coin.
_BALANCE_FIELDS = ("availableToWithdraw", "walletBalance", "equity")


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def _extract_balance(*, result: dict[str, Any], asset: str) -> Optional[AccountBalance]:
    accounts = result.get("list", [])
    if not isinstance(accounts, list) or not accounts or not isinstance(accounts[0], dict):
        return None
    coins = accounts[0].get("coin", [])
    if not isinstance(coins, list):
        return None
    for c in coins:
        if not isinstance(c, dict):
            continue
        if str(c.get("coin", "")).upper() != asset.upper():
            continue
        for key in _BALANCE_FIELDS:
            value = _to_decimal(c.get(key))
            if value > 0:
                return AccountBalance(asset=asset.upper(), available=value, source=key)
        return AccountBalance(asset=asset.upper(), available=Decimal("0"), source="")
    return None


def _parse_position(row: dict[str, Any], *, symbol: str) -> Optional[Position]:
    size = _to_decimal(row.get("size"))
    side = str(row.get("side", ""))
    if size <= 0 or side not in ("Buy", "Sell"):
        return None
    side_value: Side = "Buy" if side == "Buy" else "Sell"
    try:
        position_idx = int(row.get("positionIdx", 0) or 0)
    except (TypeError, ValueError):
        position_idx = 0
    return Position(
        symbol=str(row.get("symbol") or symbol),
        side=side_value,
        size=size,
        position_idx=position_idx,
    )


class AccountStateReader:
    def __init__(self, *, client: BybitLinearClient) -> None:
        self._client = client

    async def get_balance(self, *, account_type: str, asset: str = "USDT") -> AccountBalance:
        resp = await self._client.wallet_balance(account_type=account_type, coin=asset)
        if not resp.ok:
            raise BalanceError(f"Balance error: {resp.ret_msg} (retCode={resp.ret_code})")
        balance = _extract_balance(result=resp.result, asset=asset)
        if balance is None or balance.available <= 0:
            raise BalanceError(f"No available {asset} balance or invalid API response.")
        logger.info(
            "balance_loaded",
            extra={"qty": str(balance.available), "step": balance.source},
        )
        return balance

    async def get_position(self, *, symbol: str) -> Optional[Position]:
        """Return the first non-empty position for `symbol`, or None when flat.

        Under hedge mode both legs may be open at once; only the first is seen.
        """
        resp = await self._client.positions(symbol=symbol)
        if not resp.ok:
            raise ExchangeError(
                f"Position query failed: {resp.ret_msg}",
                symbol=symbol,
                ret_code=resp.ret_code,
                ret_msg=resp.ret_msg,
            )
        for row in resp.items():
            position = _parse_position(row, symbol=symbol)
            if position is not None:
                return position
        return None

    async def get_open_orders(self, *, symbol: str) -> list[OpenOrder]:
        resp = await self._client.open_orders(symbol=symbol)
        if not resp.ok:
            raise ExchangeError(
                f"Open order query failed: {resp.ret_msg}",
                symbol=symbol,
                ret_code=resp.ret_code,
                ret_msg=resp.ret_msg,
            )
        orders: list[OpenOrder] = []
        for row in resp.items():
            order_id = str(row.get("orderId", ""))
            if not order_id:
                continue
            orders.append(
                OpenOrder(
                    order_id=order_id,
                    symbol=str(row.get("symbol") or symbol),
                    side=str(row.get("side", "")),
                    order_type=str(row.get("orderType", "")),
                    reduce_only=bool(row.get("reduceOnly", False)),
                )
            )
        return orders
