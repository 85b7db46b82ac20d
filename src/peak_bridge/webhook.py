from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from peak_bridge.config.execution import ExecutionConfig
from peak_bridge.engine.orchestrator import ExecutionOrchestrator, build_orchestrator
from peak_bridge.errors import AuthenticationError, ExecutionError, InvalidSignal
from peak_bridge.settings import Settings
from peak_bridge.signals import SignalPayload, parse_signal

logger = logging.getLogger("peak_bridge.webhook")

_STATUS_BY_KIND = {
    AuthenticationError.kind: 403,
    InvalidSignal.kind: 400,
}


def _error_response(error: ExecutionError) -> JSONResponse:
    status = _STATUS_BY_KIND.get(error.kind, 500)
    if isinstance(error, AuthenticationError):
        return JSONResponse({"ok": False, "error": "Unauthorized"}, status_code=status)
    return JSONResponse(error.to_payload(), status_code=status)


def check_secret(*, expected: str, provided: Any) -> None:
    # An unset secret locks the endpoint instead of opening it.
    if not expected or not isinstance(provided, str):
        raise AuthenticationError("Unauthorized")
    if not hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8")):
        raise AuthenticationError("Unauthorized")


def create_app(
    *,
    settings: Settings,
    config: ExecutionConfig,
    orchestrator: ExecutionOrchestrator | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = orchestrator is None
        app.state.orchestrator = (
            build_orchestrator(settings=settings, config=config) if owned else orchestrator
        )
        if not settings.webhook_enabled():
            logger.warning("webhook_secret_missing")
        logger.info("webhook_started")
        try:
            yield
        finally:
            if owned:
                await app.state.orchestrator.aclose()
            logger.info("webhook_stopped")

    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True}

    @app.post("/")
    async def receive_signal(request: Request) -> JSONResponse:
        try:
            data = await request.json()
        except ValueError:
            return _error_response(InvalidSignal("Body is not valid JSON"))
        if not isinstance(data, dict):
            return _error_response(InvalidSignal("Body must be a JSON object"))

        try:
            check_secret(expected=settings.webhook_secret, provided=data.get("secret"))
            try:
                payload = SignalPayload.model_validate(data)
            except ValidationError as e:
                raise InvalidSignal(f"Malformed signal: {e.error_count()} invalid field(s)") from e
            signal = parse_signal(payload)
        except ExecutionError as e:
            logger.warning("signal_rejected", extra={"kind": e.kind})
            return _error_response(e)

        orch: ExecutionOrchestrator = request.app.state.orchestrator
        try:
            result = await orch.execute(signal)
        except ExecutionError as e:
            return _error_response(e)
        except Exception:
            logger.exception("execution_crashed", extra={"symbol": signal.symbol})
            return JSONResponse({"ok": False, "kind": "internal", "error": "Internal error"}, 500)
        return JSONResponse(result.to_payload())

    return app
