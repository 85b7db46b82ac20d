from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from peak_bridge.config.execution import ExecutionConfig, load_execution_config
from peak_bridge.engine.account import AccountStateReader
from peak_bridge.engine.orchestrator import build_orchestrator
from peak_bridge.errors import ExecutionError
from peak_bridge.exchange import BybitLinearClient
from peak_bridge.logging_utils import configure_logging
from peak_bridge.settings import Settings
from peak_bridge.signals import SignalPayload, parse_signal
from peak_bridge.webhook import create_app

app = typer.Typer(no_args_is_help=True, add_completion=False)
logger = logging.getLogger("peak_bridge")

_DEFAULT_CONFIG = Path("configs/execution.toml")


def _load_config(path: Path) -> ExecutionConfig:
    if not path.exists():
        logger.warning("config_missing_using_defaults")
        return ExecutionConfig()
    try:
        return load_execution_config(path)
    except Exception as e:
        raise typer.BadParameter(f"invalid config: {e}") from e


_REQUIRED_ENV = ("BYBIT_API_KEY", "BYBIT_API_SECRET", "WEBHOOK_SECRET")


@app.command()
def config_init(
    path: Path = typer.Option(Path(".env"), help="Where to write the bridge's .env file."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing file."),
) -> None:
    """
    Seed a `.env` from `.env.example` and list the credentials still to fill in.
    """
    template = Path(".env.example")
    if not template.exists():
        typer.echo(f"{template} not found; run from the project root", err=True)
        raise typer.Exit(code=2)
    if path.exists() and not overwrite:
        typer.echo(f"{path} already exists; pass --overwrite to replace it", err=True)
        raise typer.Exit(code=1)

    text = template.read_text(encoding="utf-8")
    path.write_text(text, encoding="utf-8")
    blank = [
        name
        for name in _REQUIRED_ENV
        if any(line.strip() == f"{name}=" for line in text.splitlines())
    ]
    typer.echo(f"Wrote {path}")
    if blank:
        typer.echo(f"Fill in before serving: {', '.join(blank)}")


@app.command()
def show_config(
    config: Path = typer.Option(_DEFAULT_CONFIG, help="Execution config file (TOML)."),
) -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    cfg = _load_config(config)
    redacted = settings.model_dump()
    for key in ("bybit_api_secret", "webhook_secret", "telegram_bot_token"):
        redacted[key] = "***" if redacted[key] else ""
    typer.echo({"settings": redacted, "execution": cfg.model_dump(mode="json")})


@app.command()
def health() -> None:
    """
    Check Bybit reachability and the USDT balance the bridge would size from.
    """
    settings = Settings()
    configure_logging(settings.log_level)

    async def _run() -> None:
        client = BybitLinearClient(
            api_key=settings.bybit_api_key,
            api_secret=settings.bybit_api_secret,
            base_url=settings.base_url(),
        )
        try:
            server_time = await client.server_time_ms()
            balance = await AccountStateReader(client=client).get_balance(
                account_type=settings.account_type,
                asset="USDT",
            )
            typer.echo(
                {
                    "ok": True,
                    "server_time_ms": server_time,
                    "account_type": settings.account_type,
                    "usdt_available": str(balance.available),
                    "balance_field": balance.source,
                }
            )
        finally:
            await client.aclose()

    try:
        asyncio.run(_run())
    except ExecutionError as e:
        typer.echo(e.to_payload())
        raise typer.Exit(code=1) from e


@app.command()
def execute(
    event: str = typer.Option(..., help="Signal event, e.g. 'ETH LONG' or 'SHORT'."),
    symbol: str = typer.Option(..., help="Symbol, TradingView suffixes are stripped."),
    price: str = typer.Option(..., help="Reference price."),
    lvg: Optional[int] = typer.Option(None, help="Leverage override."),
    tp: Optional[str] = typer.Option(None, help="Explicit take-profit price."),
    sl: Optional[str] = typer.Option(None, help="Explicit stop-loss price."),
    config: Path = typer.Option(_DEFAULT_CONFIG, help="Execution config file (TOML)."),
) -> None:
    """
    Execute one signal directly, bypassing the webhook.
    """
    settings = Settings()
    configure_logging(settings.log_level)
    cfg = _load_config(config)

    async def _run() -> dict[str, object]:
        signal = parse_signal(
            SignalPayload(event=event, symbol=symbol, price=price, lvg=lvg, tp=tp, sl=sl)
        )
        orchestrator = build_orchestrator(settings=settings, config=cfg)
        try:
            result = await orchestrator.execute(signal)
        finally:
            await orchestrator.aclose()
        return result.to_payload()

    try:
        payload = asyncio.run(_run())
    except ExecutionError as e:
        typer.echo(json.dumps(e.to_payload()))
        raise typer.Exit(code=1) from e
    typer.echo(json.dumps(payload, default=str))


@app.command()
def serve(
    config: Path = typer.Option(_DEFAULT_CONFIG, help="Execution config file (TOML)."),
    host: Optional[str] = typer.Option(None, help="Override: bind host."),
    port: Optional[int] = typer.Option(None, help="Override: bind port."),
) -> None:
    """
    Run the TradingView webhook server.
    """
    settings = Settings()
    configure_logging(settings.log_level)
    cfg = _load_config(config)
    web_app = create_app(settings=settings, config=cfg)
    uvicorn.run(
        web_app,
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )
