from decimal import Decimal

import pytest

from peak_bridge.errors import InvalidSignal
from peak_bridge.signals import SignalPayload, clean_symbol, parse_direction, parse_signal
from peak_bridge.types import Direction


@pytest.mark.parametrize(
    "raw, expected",
    [("ETHUSDT.P", "ETHUSDT"), ("ethusdtperp", "ETHUSDT"), ("BTCUSDTPERP", "BTCUSDT"), ("SOLUSDT", "SOLUSDT")],
)
def test_clean_symbol(raw: str, expected: str) -> None:
    assert clean_symbol(raw) == expected


def test_parse_direction_from_event_text() -> None:
    assert parse_direction("PeakAlgo LONG entry") is Direction.LONG
    assert parse_direction("short") is Direction.SHORT
    with pytest.raises(InvalidSignal):
        parse_direction("FLAT")


def test_parse_signal_full_payload() -> None:
    signal = parse_signal(
        SignalPayload(
            secret="s",
            event="ETH SHORT",
            symbol="ETHUSDT.P",
            price="2500.5",
            lvg=5,
            tp="2400",
            sl=2600,
        )
    )
    assert signal.direction is Direction.SHORT
    assert signal.side == "Sell"
    assert signal.symbol == "ETHUSDT"
    assert signal.reference_price == Decimal("2500.5")
    assert signal.leverage == 5
    assert signal.take_profit == Decimal("2400")
    assert signal.stop_loss == Decimal("2600")


def test_parse_signal_optional_fields_default_to_none() -> None:
    signal = parse_signal(SignalPayload(event="LONG", symbol="ETHUSDT", price=2500, lvg=""))
    assert signal.leverage is None
    assert signal.take_profit is None
    assert signal.stop_loss is None


@pytest.mark.parametrize(
    "payload",
    [
        {"symbol": "ETHUSDT", "price": "2500"},
        {"event": "LONG", "price": "2500"},
        {"event": "LONG", "symbol": "ETHUSDT"},
        {"event": "LONG", "symbol": "ETHUSDT", "price": "abc"},
        {"event": "LONG", "symbol": "ETHUSDT", "price": "-3"},
        {"event": "LONG", "symbol": "ETHUSDT", "price": "2500", "lvg": "2.5"},
        {"event": "HOLD", "symbol": "ETHUSDT", "price": "2500"},
    ],
)
def test_parse_signal_rejects_malformed_payloads(payload: dict[str, str]) -> None:
    with pytest.raises(InvalidSignal):
        parse_signal(SignalPayload.model_validate(payload))
