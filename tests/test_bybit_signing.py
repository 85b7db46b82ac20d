import hmac
import json
from decimal import Decimal
from hashlib import sha256

from peak_bridge.exchange.bybit_linear import build_query_string, serialize_body, sign_payload


def test_build_query_string_keeps_order_and_drops_none() -> None:
    qs = build_query_string({"accountType": "UNIFIED", "coin": "USDT", "limit": None})
    assert qs == "accountType=UNIFIED&coin=USDT"


def test_build_query_string_renders_decimal_plainly() -> None:
    assert build_query_string({"qty": Decimal("1E-2")}) == "qty=0.01"


def test_serialize_body_is_compact_json() -> None:
    body = serialize_body({"symbol": "ETHUSDT", "qty": Decimal("1.14"), "reduceOnly": False})
    assert body == '{"symbol":"ETHUSDT","qty":"1.14","reduceOnly":false}'
    assert json.loads(body)["qty"] == "1.14"


def test_sign_payload_matches_known_example() -> None:
    timestamp_ms = 1658384314791
    api_key = "XXXXXXXXXX"
    recv_window_ms = 5000
    payload = "category=option&symbol=BTC-29JUL22-25000-C"
    secret = "YYYYYYYYYY"
    expected = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp_ms}{api_key}{recv_window_ms}{payload}".encode("utf-8"),
        sha256,
    ).hexdigest()
    assert (
        sign_payload(
            timestamp_ms=timestamp_ms,
            api_key=api_key,
            recv_window_ms=recv_window_ms,
            payload=payload,
            api_secret=secret,
        )
        == expected
    )
