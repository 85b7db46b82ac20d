import asyncio
import hmac
import json
from hashlib import sha256

import httpx
import pytest

from peak_bridge.errors import ProtocolError, TransportError
from peak_bridge.exchange.bybit_linear import BybitLinearClient


def _expected_sign(request: httpx.Request, payload: str, secret: str) -> str:
    pre_sign = (
        request.headers["X-BAPI-TIMESTAMP"]
        + request.headers["X-BAPI-API-KEY"]
        + request.headers["X-BAPI-RECV-WINDOW"]
        + payload
    )
    return hmac.new(secret.encode("utf-8"), pre_sign.encode("utf-8"), sha256).hexdigest()


def _client(handler) -> BybitLinearClient:
    return BybitLinearClient(
        api_key="key",
        api_secret="secret",
        base_url=" https://api-testnet.bybit.com/ ",
        transport=httpx.MockTransport(handler),
    )


def test_get_request_signs_the_query_string_it_sends() -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        query = request.url.query.decode("ascii")
        captured["host"] = request.url.host
        captured["path"] = request.url.path
        captured["query"] = query
        captured["recv"] = request.headers["X-BAPI-RECV-WINDOW"]
        captured["valid"] = str(request.headers["X-BAPI-SIGN"] == _expected_sign(request, query, "secret"))
        return httpx.Response(200, json={"retCode": 0, "retMsg": "OK", "result": {"list": []}})

    client = _client(handler)
    try:
        resp = asyncio.run(client.wallet_balance(account_type="UNIFIED", coin="USDT"))
    finally:
        asyncio.run(client.aclose())

    assert resp.ok
    assert captured["host"] == "api-testnet.bybit.com"
    assert captured["path"] == "/v5/account/wallet-balance"
    assert captured["query"] == "accountType=UNIFIED&coin=USDT"
    assert captured["recv"] == "5000"
    assert captured["valid"] == "True"


def test_post_request_signs_the_body_it_sends() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        body = request.content.decode("utf-8")
        captured["body"] = json.loads(body)
        captured["content_type"] = request.headers["Content-Type"]
        captured["valid"] = request.headers["X-BAPI-SIGN"] == _expected_sign(request, body, "secret")
        return httpx.Response(200, json={"retCode": 0, "retMsg": "OK", "result": {}})

    client = _client(handler)
    try:
        asyncio.run(client.set_leverage(symbol="ETHUSDT", buy_leverage=3, sell_leverage=3))
    finally:
        asyncio.run(client.aclose())

    assert captured["body"] == {
        "category": "linear",
        "symbol": "ETHUSDT",
        "buyLeverage": "3",
        "sellLeverage": "3",
    }
    assert captured["content_type"] == "application/json"
    assert captured["valid"] is True


def test_non_zero_ret_code_is_returned_not_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"retCode": 10001, "retMsg": "params error", "result": {}})

    client = _client(handler)
    try:
        resp = asyncio.run(client.positions(symbol="ETHUSDT"))
    finally:
        asyncio.run(client.aclose())

    assert not resp.ok
    assert resp.ret_code == 10001
    assert resp.ret_msg == "params error"


def test_network_failure_raises_transport_error_without_retry() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    try:
        with pytest.raises(TransportError):
            asyncio.run(client.open_orders(symbol="ETHUSDT"))
    finally:
        asyncio.run(client.aclose())

    assert calls["n"] == 1


def test_non_json_body_raises_protocol_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="<html>forbidden</html>")

    client = _client(handler)
    try:
        with pytest.raises(ProtocolError) as excinfo:
            asyncio.run(client.positions(symbol="ETHUSDT"))
    finally:
        asyncio.run(client.aclose())

    assert excinfo.value.status_code == 403


def test_json_without_ret_code_raises_protocol_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[1, 2, 3])

    client = _client(handler)
    try:
        with pytest.raises(ProtocolError):
            asyncio.run(client.positions(symbol="ETHUSDT"))
    finally:
        asyncio.run(client.aclose())


def test_server_time_is_unsigned() -> None:
    captured: dict[str, bool] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["signed"] = "X-BAPI-SIGN" in request.headers
        return httpx.Response(
            200,
            json={"retCode": 0, "retMsg": "OK", "result": {}, "time": 1700000000123},
        )

    client = BybitLinearClient(api_key="", api_secret="", transport=httpx.MockTransport(handler))
    try:
        server_time = asyncio.run(client.server_time_ms())
    finally:
        asyncio.run(client.aclose())

    assert server_time == 1700000000123
    assert captured["signed"] is False


def test_signed_call_without_secret_fails_fast() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = BybitLinearClient(api_key="", api_secret="", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(RuntimeError):
            asyncio.run(client.positions(symbol="ETHUSDT"))
    finally:
        asyncio.run(client.aclose())
