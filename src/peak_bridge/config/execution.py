from __future__ import annotations

import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field


class SizingConfig(BaseModel):
    margin_fraction: Decimal = Field(default=Decimal("0.95"), gt=0, le=1)
    default_leverage: int = Field(default=3, ge=1)
    max_leverage: int = Field(default=100, ge=1)
    min_qty: Decimal = Field(default=Decimal("0.01"), gt=0)
    max_qty: Decimal = Field(default=Decimal("100"), gt=0)
    min_notional: Decimal = Field(default=Decimal("10"), ge=0)
    qty_step: Decimal = Field(default=Decimal("0.01"), gt=0)
    rounding: Literal["down", "up"] = "down"


class BracketConfig(BaseModel):
    take_profit_pct: Decimal = Field(default=Decimal("2.72"), gt=0, lt=100)
    stop_loss_pct: Decimal = Field(default=Decimal("9.0"), gt=0, lt=100)
    price_tick: Decimal = Field(default=Decimal("0.01"), gt=0)


class ReconcileConfig(BaseModel):
    poll_interval_seconds: float = Field(default=1.0, ge=0)
    poll_max_attempts: int = Field(default=10, ge=1)
    poll_deadline_seconds: float = Field(default=15.0, gt=0)


class ExchangeConfig(BaseModel):
    category: str = "linear"
    recv_window_ms: int = Field(default=5_000, ge=1)
    timeout_seconds: float = Field(default=10.0, gt=0)
    position_mode: Optional[Literal["one_way", "hedge"]] = None


class ExecutionConfig(BaseModel):
    sizing: SizingConfig = Field(default_factory=SizingConfig)
    bracket: BracketConfig = Field(default_factory=BracketConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)

    def validate_logic(self) -> None:
        if self.sizing.min_qty > self.sizing.max_qty:
            raise ValueError("sizing.min_qty must be <= sizing.max_qty")
        if self.sizing.default_leverage > self.sizing.max_leverage:
            raise ValueError("sizing.default_leverage must be <= sizing.max_leverage")


def load_execution_config(path: Path) -> ExecutionConfig:
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    cfg = ExecutionConfig.model_validate(raw)
    cfg.validate_logic()
    return cfg
