import asyncio
from decimal import Decimal

import pytest

from peak_bridge.engine.account import AccountStateReader
from peak_bridge.errors import BalanceError, ExchangeError
from peak_bridge.exchange.bybit_linear import BybitResponse


def _ok(result: dict[str, object]) -> BybitResponse:
    return BybitResponse(ret_code=0, ret_msg="OK", result=result, raw={"retCode": 0})


def _wallet(coin: dict[str, str]) -> BybitResponse:
    return _ok({"list": [{"accountType": "UNIFIED", "coin": [coin]}]})


class _FakeClient:
    def __init__(
        self,
        *,
        wallet: BybitResponse | None = None,
        positions: BybitResponse | None = None,
        orders: BybitResponse | None = None,
    ) -> None:
        self.wallet = wallet
        self.position_resp = positions
        self.orders = orders
        self.wallet_calls: list[dict[str, str]] = []

    async def wallet_balance(self, *, account_type: str, coin: str) -> BybitResponse:
        self.wallet_calls.append({"account_type": account_type, "coin": coin})
        assert self.wallet is not None
        return self.wallet

    async def positions(self, *, symbol: str) -> BybitResponse:
        assert self.position_resp is not None
        return self.position_resp

    async def open_orders(self, *, symbol: str) -> BybitResponse:
        assert self.orders is not None
        return self.orders


def test_balance_prefers_available_to_withdraw() -> None:
    client = _FakeClient(
        wallet=_wallet(
            {"coin": "USDT", "availableToWithdraw": "812.5", "walletBalance": "900", "equity": "950"}
        )
    )
    balance = asyncio.run(
        AccountStateReader(client=client).get_balance(account_type="UNIFIED", asset="USDT")  # type: ignore[arg-type]
    )
    assert balance.available == Decimal("812.5")
    assert balance.source == "availableToWithdraw"
    assert client.wallet_calls == [{"account_type": "UNIFIED", "coin": "USDT"}]


def test_balance_falls_back_to_wallet_then_equity() -> None:
    client = _FakeClient(
        wallet=_wallet({"coin": "USDT", "availableToWithdraw": "", "walletBalance": "0", "equity": "42"})
    )
    balance = asyncio.run(
        AccountStateReader(client=client).get_balance(account_type="UNIFIED")  # type: ignore[arg-type]
    )
    assert balance.available == Decimal("42")
    assert balance.source == "equity"

    client = _FakeClient(
        wallet=_wallet({"coin": "USDT", "availableToWithdraw": "0", "walletBalance": "77.1"})
    )
    balance = asyncio.run(
        AccountStateReader(client=client).get_balance(account_type="UNIFIED")  # type: ignore[arg-type]
    )
    assert balance.available == Decimal("77.1")
    assert balance.source == "walletBalance"


def test_balance_error_on_non_success_status() -> None:
    client = _FakeClient(
        wallet=BybitResponse(ret_code=10003, ret_msg="API key is invalid.", result={}, raw={})
    )
    with pytest.raises(BalanceError) as excinfo:
        asyncio.run(
            AccountStateReader(client=client).get_balance(account_type="UNIFIED")  # type: ignore[arg-type]
        )
    assert "API key is invalid." in str(excinfo.value)


def test_balance_error_on_zero_or_missing_balance() -> None:
    zero = _FakeClient(
        wallet=_wallet({"coin": "USDT", "availableToWithdraw": "0", "walletBalance": "0", "equity": "0"})
    )
    with pytest.raises(BalanceError):
        asyncio.run(
            AccountStateReader(client=zero).get_balance(account_type="UNIFIED")  # type: ignore[arg-type]
        )

    missing = _FakeClient(wallet=_ok({"list": []}))
    with pytest.raises(BalanceError):
        asyncio.run(
            AccountStateReader(client=missing).get_balance(account_type="UNIFIED")  # type: ignore[arg-type]
        )


def test_get_position_returns_first_non_empty_entry() -> None:
    client = _FakeClient(
        positions=_ok(
            {
                "list": [
                    {"symbol": "ETHUSDT", "side": "", "size": "0", "positionIdx": 0},
                    {"symbol": "ETHUSDT", "side": "Sell", "size": "1.5", "positionIdx": 0},
                    {"symbol": "ETHUSDT", "side": "Buy", "size": "2", "positionIdx": 0},
                ]
            }
        )
    )
    position = asyncio.run(
        AccountStateReader(client=client).get_position(symbol="ETHUSDT")  # type: ignore[arg-type]
    )
    assert position is not None
    assert position.side == "Sell"
    assert position.size == Decimal("1.5")


def test_get_position_none_when_flat() -> None:
    client = _FakeClient(
        positions=_ok({"list": [{"symbol": "ETHUSDT", "side": "", "size": "0", "positionIdx": 0}]})
    )
    position = asyncio.run(
        AccountStateReader(client=client).get_position(symbol="ETHUSDT")  # type: ignore[arg-type]
    )
    assert position is None


def test_get_position_raises_on_non_success_status() -> None:
    client = _FakeClient(positions=BybitResponse(ret_code=10006, ret_msg="Too many visits", result={}))
    with pytest.raises(ExchangeError) as excinfo:
        asyncio.run(
            AccountStateReader(client=client).get_position(symbol="ETHUSDT")  # type: ignore[arg-type]
        )
    assert excinfo.value.ret_code == 10006


def test_get_open_orders_parses_rows() -> None:
    client = _FakeClient(
        orders=_ok(
            {
                "list": [
                    {"orderId": "a1", "symbol": "ETHUSDT", "side": "Sell", "orderType": "Limit", "reduceOnly": True},
                    {"orderId": "", "symbol": "ETHUSDT"},
                    {"orderId": "b2", "symbol": "ETHUSDT", "side": "Buy", "orderType": "Market"},
                ]
            }
        )
    )
    orders = asyncio.run(
        AccountStateReader(client=client).get_open_orders(symbol="ETHUSDT")  # type: ignore[arg-type]
    )
    assert [o.order_id for o in orders] == ["a1", "b2"]
    assert orders[0].reduce_only is True
