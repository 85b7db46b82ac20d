from __future__ import annotations

import hmac
import json
import time
from dataclasses import dataclass, field
from decimal import Decimal
from hashlib import sha256
from typing import Any
from urllib.parse import urlencode

import httpx

from peak_bridge.errors import ProtocolError, TransportError

_DEFAULT_RECV_WINDOW_MS = 5_000
_DEFAULT_CATEGORY = "linear"


@dataclass(frozen=True)
class BybitResponse:
    ret_code: int
    ret_msg: str
    result: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.ret_code == 0

    def items(self) -> list[dict[str, Any]]:
        rows = self.result.get("list", [])
        if not isinstance(rows, list):
            return []
        return [r for r in rows if isinstance(r, dict)]


def _normalize_value(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _compact_params(params: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None}


def build_query_string(params: dict[str, Any]) -> str:
    items: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        items.append((key, _normalize_value(value)))
    return urlencode(items)


def serialize_body(body: dict[str, Any]) -> str:
    return json.dumps(_compact_params(body), separators=(",", ":"), default=_normalize_value)


def sign_payload(
    *,
    timestamp_ms: int,
    api_key: str,
    recv_window_ms: int,
    payload: str,
    api_secret: str,
) -> str:
    pre_sign = f"{timestamp_ms}{api_key}{recv_window_ms}{payload}"
    mac = hmac.new(api_secret.encode("utf-8"), pre_sign.encode("utf-8"), sha256)
    return mac.hexdigest()


def parse_response(response: httpx.Response) -> BybitResponse:
    try:
        data = response.json()
    except ValueError as e:
        raise ProtocolError(
            f"Bybit response is not JSON: status={response.status_code}",
            status_code=response.status_code,
            body=response.text[:500],
        ) from e
    if not isinstance(data, dict) or "retCode" not in data:
        raise ProtocolError(
            f"Bybit response has no retCode: status={response.status_code}",
            status_code=response.status_code,
            body=response.text[:500],
        )
    try:
        ret_code = int(data["retCode"])
    except (TypeError, ValueError) as e:
        raise ProtocolError(
            f"Bybit retCode is not an integer: {data['retCode']!r}",
            status_code=response.status_code,
            body=response.text[:500],
        ) from e
    result = data.get("result")
    return BybitResponse(
        ret_code=ret_code,
        ret_msg=str(data.get("retMsg", "")),
        result=result if isinstance(result, dict) else {},
        raw=data,
    )


class BybitLinearClient:
    """Signed Bybit v5 REST client covering the handful of calls the bridge needs.

    Every call is a single request: no retries happen here, callers decide.
    Responses are returned even when `retCode` is non-zero so callers can branch
    on the exchange status rather than on HTTP status.
    """

    def __init__(
        self,
        *,
        api_key: str,
        api_secret: str,
        base_url: str = "https://api.bybit.com",
        category: str = _DEFAULT_CATEGORY,
        timeout_seconds: float = 10.0,
        recv_window_ms: int = _DEFAULT_RECV_WINDOW_MS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = "".join(base_url.split()).rstrip("/")
        self._category = category
        self._recv_window_ms = int(max(1, recv_window_ms))
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @property
    def category(self) -> str:
        return self._category

    async def aclose(self) -> None:
        await self._client.aclose()

    async def server_time_ms(self) -> int:
        resp = await self.send("GET", "/v5/market/time", params={}, signed=False)
        try:
            return int(resp.raw["time"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError("Bybit server time missing from response") from e

    async def wallet_balance(self, *, account_type: str, coin: str) -> BybitResponse:
        return await self.send(
            "GET",
            "/v5/account/wallet-balance",
            params={"accountType": account_type, "coin": coin},
        )

    async def positions(self, *, symbol: str) -> BybitResponse:
        return await self.send(
            "GET",
            "/v5/position/list",
            params={"category": self._category, "symbol": symbol},
        )

    async def open_orders(self, *, symbol: str) -> BybitResponse:
        return await self.send(
            "GET",
            "/v5/order/realtime",
            params={"category": self._category, "symbol": symbol},
        )

    async def cancel_order(self, *, symbol: str, order_id: str) -> BybitResponse:
        return await self.send(
            "POST",
            "/v5/order/cancel",
            params={"category": self._category, "symbol": symbol, "orderId": order_id},
        )

    async def set_leverage(
        self,
        *,
        symbol: str,
        buy_leverage: int,
        sell_leverage: int,
    ) -> BybitResponse:
        return await self.send(
            "POST",
            "/v5/position/set-leverage",
            params={
                "category": self._category,
                "symbol": symbol,
                "buyLeverage": str(buy_leverage),
                "sellLeverage": str(sell_leverage),
            },
        )

    async def switch_position_mode(self, *, symbol: str, mode: int) -> BybitResponse:
        return await self.send(
            "POST",
            "/v5/position/switch-mode",
            params={"category": self._category, "symbol": symbol, "mode": mode},
        )

    async def create_order(self, *, payload: dict[str, Any]) -> BybitResponse:
        return await self.send("POST", "/v5/order/create", params=payload)

    async def send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any],
        signed: bool = True,
    ) -> BybitResponse:
        method = method.upper()
        if method == "GET":
            payload = build_query_string(params)
            url = f"{path}?{payload}" if payload else path
            content: str | None = None
        else:
            payload = serialize_body(params)
            url = path
            content = payload

        headers: dict[str, str] = {}
        if content is not None:
            headers["Content-Type"] = "application/json"
        if signed:
            if not self._api_secret:
                raise RuntimeError("BYBIT_API_SECRET is required for signed endpoints")
            timestamp_ms = int(time.time() * 1000)
            headers.update(
                {
                    "X-BAPI-API-KEY": self._api_key,
                    "X-BAPI-TIMESTAMP": str(timestamp_ms),
                    "X-BAPI-RECV-WINDOW": str(self._recv_window_ms),
                    "X-BAPI-SIGN-TYPE": "2",
                    "X-BAPI-SIGN": sign_payload(
                        timestamp_ms=timestamp_ms,
                        api_key=self._api_key,
                        recv_window_ms=self._recv_window_ms,
                        payload=payload,
                        api_secret=self._api_secret,
                    ),
                }
            )

        try:
            response = await self._client.request(method, url, content=content, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransportError(f"{method} {path} failed: {type(e).__name__}: {e}") from e

        return parse_response(response)
