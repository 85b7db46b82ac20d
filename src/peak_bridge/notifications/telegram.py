from __future__ import annotations

import httpx

from peak_bridge.errors import ExecutionError
from peak_bridge.types import ExecutionResult, TradeSignal, plain


def format_result(result: ExecutionResult) -> str:
    lines = [
        f"[OPENED] {result.signal.symbol} {result.side} qty={plain(result.qty)} "
        f"x{result.leverage}",
        f"entry≈{plain(result.signal.reference_price)} tp={plain(result.take_profit)} "
        f"sl={plain(result.stop_loss)}",
        f"reconcile={result.reconcile_state} order_id={result.ack.order_id}",
    ]
    for w in result.warnings:
        lines.append(f"warning: {w.step}: {w.reason}")
    return "\n".join(lines)


def format_failure(signal: TradeSignal, error: ExecutionError) -> str:
    return (
        f"[FAILED] {signal.symbol} {signal.side} @ {plain(signal.reference_price)}\n"
        f"{error.kind}: {error}"
    )


class TelegramNotifier:
    def __init__(
        self,
        *,
        bot_token: str,
        chat_id: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token.strip()
        self._chat_id = chat_id.strip()
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    def enabled(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, text: str) -> None:
        if not self.enabled():
            return
        url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
        payload = {"chat_id": self._chat_id, "text": text, "disable_web_page_preview": True}
        resp = await self._client.post(url, json=payload)
        resp.raise_for_status()
