from __future__ import annotations

from typing import Any


class ExecutionError(RuntimeError):
    """Terminal failure of one signal's execution.

    `kind` is the stable, caller-visible name of the failure; the message is
    human readable. Neither carries a traceback across the boundary.
    """

    kind = "execution_error"

    def __init__(self, message: str, *, symbol: str | None = None) -> None:
        super().__init__(message)
        self.symbol = symbol

    def to_payload(self) -> dict[str, Any]:
        return {"ok": False, "kind": self.kind, "error": str(self)}


class AuthenticationError(ExecutionError):
    kind = "authentication"


class InvalidSignal(ExecutionError):
    kind = "invalid_signal"


class BalanceError(ExecutionError):
    kind = "balance"


class SizingError(ExecutionError):
    kind = "sizing"


class ExchangeError(ExecutionError):
    kind = "exchange"

    def __init__(
        self,
        message: str,
        *,
        symbol: str | None = None,
        ret_code: int | None = None,
        ret_msg: str = "",
    ) -> None:
        super().__init__(message, symbol=symbol)
        self.ret_code = ret_code
        self.ret_msg = ret_msg


class FlipError(ExchangeError):
    kind = "flip"


class FlipTimeoutError(ExecutionError):
    kind = "flip_timeout"


class OrderRejected(ExchangeError):
    kind = "order_rejected"

    def __init__(
        self,
        message: str,
        *,
        symbol: str | None = None,
        ret_code: int | None = None,
        ret_msg: str = "",
        payload: Any = None,
    ) -> None:
        super().__init__(message, symbol=symbol, ret_code=ret_code, ret_msg=ret_msg)
        self.payload = payload


class TransportError(ExecutionError):
    kind = "transport"


class ProtocolError(ExecutionError):
    kind = "protocol"

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
