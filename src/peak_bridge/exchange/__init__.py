__all__ = ["BybitLinearClient", "BybitResponse"]

from peak_bridge.exchange.bybit_linear import BybitLinearClient, BybitResponse
