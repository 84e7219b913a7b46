"""Admin HTTP API: health checks, runtime prompt/model configuration, WhatsApp webhook."""

from __future__ import annotations

import hmac
import time
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import BackgroundTasks, Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException

from sonar_bot.ai.client import PerplexityClient
from sonar_bot.ai.prompts import PROTECTED_PRESET, PromptPreset, PromptRegistry
from sonar_bot.config import AppConfig
from sonar_bot.core.bot_registry import BotRegistry
from sonar_bot.core.errors import BotError
from sonar_bot.core.types import Platform
from sonar_bot.log import get_logger
from sonar_bot.messenger.whatsapp import WhatsAppAdapter
from sonar_bot.services.service_manager import ServiceManager
from sonar_bot.storage.base import SessionStorage

logger = get_logger(__name__)

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "::1", "::ffff:127.0.0.1"})

JsonBody = Optional[dict[str, Any]]


def _bad_request(error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error, **extra})


def create_admin_app(
    config: AppConfig,
    registry: PromptRegistry,
    client: PerplexityClient,
    bots: BotRegistry,
    whatsapp: Optional[WhatsAppAdapter] = None,
    services: Optional[ServiceManager] = None,
    storage: Optional[SessionStorage] = None,
) -> FastAPI:
    """Build the admin FastAPI application around the running components."""
    app = FastAPI(title="sonar-bot admin", docs_url=None, redoc_url=None, openapi_url=None)
    started = time.monotonic()

    def uptime() -> float:
        return round(time.monotonic() - started, 3)

    def require_admin_key(request: Request) -> None:
        expected = config.security.admin_api_key
        if not expected:
            host = request.client.host if request.client else None
            if host in LOOPBACK_HOSTS:
                return
            raise HTTPException(status_code=401, detail="Unauthorized")
        provided = request.headers.get("x-api-key", "")
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        client_host = request.client.host if request.client else None
        logger.debug("api_request", method=request.method, path=request.url.path, ip=client_host)
        return await call_next(request)

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        error = "Not found" if exc.status_code == 404 else exc.detail
        return JSONResponse(status_code=exc.status_code, content={"error": error})

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _bad_request("Invalid request body")

    @app.exception_handler(BotError)
    async def bot_error(request: Request, exc: BotError) -> JSONResponse:
        logger.error("api_error", error=exc.message, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("api_error", error=str(exc), path=request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # Health

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": uptime(),
        }

    @app.get("/health/detailed")
    async def health_detailed() -> dict[str, Any]:
        active = bots.status()
        body: dict[str, Any] = {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": uptime(),
            "services": {
                "telegram": {
                    "enabled": config.telegram.enabled,
                    "active": active[str(Platform.TELEGRAM)],
                },
                "whatsapp": {
                    "enabled": config.whatsapp.enabled,
                    "active": active[str(Platform.WHATSAPP)],
                    "phone_number_id": config.whatsapp.phone_number_id or None,
                },
            },
            "config": {
                "defaultModel": registry.get_default_model(),
                "defaultTemperature": registry.get_default_temperature(),
                "whitelistEnabled": config.security.whitelist_enabled,
                "rateLimitRequests": config.security.rate_limit_requests,
                "rateLimitWindow": config.security.rate_limit_window_seconds,
            },
        }
        if storage is not None:
            body["storage"] = {"backend": storage.backend_name, "healthy": await storage.ping()}
        if services is not None:
            body["background"] = await services.health_check_all()
        return body

    # Configuration

    admin = [Depends(require_admin_key)]

    @app.get("/admin/config", dependencies=admin)
    async def get_config() -> dict[str, Any]:
        return registry.snapshot()

    @app.put("/admin/config/prompt", dependencies=admin)
    async def update_prompt(payload: JsonBody = Body(None)):
        prompt = (payload or {}).get("prompt")
        if not prompt or not isinstance(prompt, str):
            return _bad_request("Prompt is required and must be a string")
        registry.set_global_system_prompt(prompt)
        return {"success": True, "message": "Global system prompt updated"}

    @app.put("/admin/config/model", dependencies=admin)
    async def update_model(payload: JsonBody = Body(None)):
        model = (payload or {}).get("model")
        available = client.available_models()
        if not model or model not in available:
            return _bad_request("Invalid model", availableModels=available)
        registry.set_default_model(model)
        return {"success": True, "message": f"Default model updated to {model}"}

    @app.put("/admin/config/temperature", dependencies=admin)
    async def update_temperature(payload: JsonBody = Body(None)):
        temperature = (payload or {}).get("temperature")
        if (
            isinstance(temperature, bool)
            or not isinstance(temperature, (int, float))
            or not 0 <= temperature <= 2
        ):
            return _bad_request("Temperature must be a number between 0 and 2")
        registry.set_default_temperature(float(temperature))
        return {"success": True, "message": f"Default temperature updated to {temperature}"}

    @app.put("/admin/config/max-tokens", dependencies=admin)
    async def update_max_tokens(payload: JsonBody = Body(None)):
        max_tokens = (payload or {}).get("maxTokens")
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens < 1:
            return _bad_request("maxTokens must be a positive integer")
        registry.set_default_max_tokens(max_tokens)
        return {
            "success": True,
            "message": f"Default max tokens updated to {registry.get_default_max_tokens()}",
        }

    @app.post("/admin/config/reload", dependencies=admin)
    async def reload_config() -> dict[str, Any]:
        registry.reload()
        return {"success": True, "message": "Configuration reloaded"}

    # Presets

    @app.get("/admin/presets", dependencies=admin)
    async def list_presets() -> dict[str, Any]:
        return {key: preset.model_dump() for key, preset in registry.get_presets().items()}

    @app.put("/admin/presets/{key}", dependencies=admin)
    async def upsert_preset(key: str, payload: JsonBody = Body(None)):
        payload = payload or {}
        if not all(payload.get(field) for field in ("name", "description", "prompt")):
            return _bad_request("name, description, and prompt are required")
        try:
            preset = PromptPreset.model_validate(payload)
        except ValidationError:
            return _bad_request("Invalid preset")
        registry.set_preset(key, preset)
        return {"success": True, "message": f"Preset '{key}' updated"}

    @app.delete("/admin/presets/{key}", dependencies=admin)
    async def delete_preset(key: str):
        if key == PROTECTED_PRESET:
            return _bad_request("Cannot delete default preset")
        if not registry.delete_preset(key):
            return JSONResponse(status_code=404, content={"error": "Preset not found"})
        return {"success": True, "message": f"Preset '{key}' deleted"}

    # Models

    @app.get("/admin/models", dependencies=admin)
    async def list_models() -> dict[str, Any]:
        return {"models": client.available_models(), "current": registry.get_default_model()}

    @app.post("/admin/validate-api-key", dependencies=admin)
    async def validate_api_key() -> dict[str, Any]:
        valid = await client.validate_api_key()
        return {
            "valid": valid,
            "message": "API key is valid" if valid else "API key validation failed",
        }

    # WhatsApp webhook

    @app.get("/webhooks/whatsapp")
    async def whatsapp_verify(
        mode: Optional[str] = Query(None, alias="hub.mode"),
        token: Optional[str] = Query(None, alias="hub.verify_token"),
        challenge: Optional[str] = Query(None, alias="hub.challenge"),
    ):
        if whatsapp is None:
            raise HTTPException(status_code=404)
        answer = whatsapp.verify_webhook(mode, token, challenge)
        if answer is None:
            raise HTTPException(status_code=403, detail="Verification failed")
        return PlainTextResponse(answer)

    @app.post("/webhooks/whatsapp")
    async def whatsapp_event(background: BackgroundTasks, payload: JsonBody = Body(None)):
        if whatsapp is None:
            raise HTTPException(status_code=404)
        # Meta expects a fast 200; replies are sent after the response.
        background.add_task(whatsapp.handle_webhook, payload or {})
        return {"status": "received"}

    return app
