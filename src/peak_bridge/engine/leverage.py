from __future__ import annotations

import logging
from typing import Awaitable, Literal, Optional

from peak_bridge.errors import ProtocolError, TransportError
from peak_bridge.exchange import BybitLinearClient
from peak_bridge.exchange.bybit_linear import BybitResponse
from peak_bridge.types import StepFailure

logger = logging.getLogger("peak_bridge.leverage")

PositionMode = Literal["one_way", "hedge"]

_LEVERAGE_NOT_MODIFIED = 110043
_POSITION_MODE_NOT_MODIFIED = 110025
_MODE_CODES: dict[str, int] = {"one_way": 0, "hedge": 3}


class LeverageConfigurator:
    """Best-effort leverage and position-mode setup.

    Never raises for exchange-side problems: every failure is returned as an
    advisory `StepFailure` and logged as a warning.
    """

    def __init__(
        self,
        *,
        client: BybitLinearClient,
        position_mode: Optional[PositionMode] = None,
    ) -> None:
        self._client = client
        self._position_mode = position_mode

    async def configure(self, *, symbol: str, leverage: int) -> list[StepFailure]:
        failures: list[StepFailure] = []
        if self._position_mode is not None:
            failure = await self._attempt(
                step="position_mode",
                symbol=symbol,
                not_modified=_POSITION_MODE_NOT_MODIFIED,
                call=self._client.switch_position_mode(
                    symbol=symbol,
                    mode=_MODE_CODES[self._position_mode],
                ),
            )
            if failure is not None:
                failures.append(failure)

        failure = await self._attempt(
            step="set_leverage",
            symbol=symbol,
            not_modified=_LEVERAGE_NOT_MODIFIED,
            call=self._client.set_leverage(
                symbol=symbol,
                buy_leverage=leverage,
                sell_leverage=leverage,
            ),
        )
        if failure is not None:
            failures.append(failure)
        else:
            logger.info("leverage_set", extra={"symbol": symbol, "leverage": leverage})
        return failures

    async def _attempt(
        self,
        *,
        step: str,
        symbol: str,
        not_modified: int,
        call: Awaitable[BybitResponse],
    ) -> Optional[StepFailure]:
        try:
            resp = await call
        except (TransportError, ProtocolError) as e:
            reason = f"{type(e).__name__}: {e}"
        else:
            if resp.ok or resp.ret_code == not_modified:
                return None
            reason = f"{resp.ret_msg} (retCode={resp.ret_code})"
        logger.warning(
            "advisory_step_failed",
            extra={"symbol": symbol, "step": step, "reason": reason},
        )
        return StepFailure(step=step, severity="advisory", reason=reason)
