"""FastAPI application: broadcast webhook and the administrative endpoints."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader

from noga_bot.ai.engine import SYSTEM_PROMPT_KEY
from noga_bot.api.schemas import (
    BroadcastRequest,
    DeviceMappingIn,
    KeywordIn,
    ScheduledPromptIn,
    SystemPromptIn,
)
from noga_bot.config import ApiConfig
from noga_bot.errors import ValidationError
from noga_bot.log import get_logger
from noga_bot.messenger.models import OutgoingMessage

if TYPE_CHECKING:
    from noga_bot.ai.engine import ConversationEngine
    from noga_bot.messenger.base import MessengerAdapter
    from noga_bot.services.scheduler import SchedulerService
    from noga_bot.storage.admin_repo import AdminRepository
    from noga_bot.storage.conversation_repo import ConversationRepository

logger = get_logger(__name__)

webhook_secret_header = APIKeyHeader(name="X-Webhook-Secret", auto_error=False)
admin_token_header = APIKeyHeader(name="X-Admin-Token", auto_error=False)


@dataclass
class ApiContext:
    """Collaborators the HTTP layer needs, injected by the application."""

    config: ApiConfig
    engine: ConversationEngine
    admin_repo: AdminRepository
    conversation_repo: ConversationRepository
    messenger: MessengerAdapter
    broadcast_destination: Optional[str] = None
    scheduler: Optional[SchedulerService] = None


def get_context(request: Request) -> ApiContext:
    return request.app.state.ctx


def verify_webhook_secret(
    secret: Optional[str] = Security(webhook_secret_header),
    ctx: ApiContext = Depends(get_context),
) -> None:
    expected = ctx.config.webhook_secret
    if not expected or secret != expected:
        logger.warning("webhook_unauthorized")
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


def verify_admin_token(
    token: Optional[str] = Security(admin_token_header),
    ctx: ApiContext = Depends(get_context),
) -> None:
    expected = ctx.config.admin_token
    if not expected or token != expected:
        logger.warning("admin_unauthorized")
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _not_found(kind: str, item_id: int) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{kind} {item_id} not found")


webhook_router = APIRouter(prefix="/webhook", tags=["webhook"])
admin_router = APIRouter(prefix="/api", tags=["admin"], dependencies=[Depends(verify_admin_token)])


@webhook_router.post("/broadcast", dependencies=[Depends(verify_webhook_secret)])
async def broadcast(body: BroadcastRequest, ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    if not ctx.broadcast_destination:
        raise HTTPException(status_code=503, detail="No broadcast destination configured")
    if not ctx.messenger.is_ready:
        raise HTTPException(status_code=503, detail="Messenger is not connected")

    text = await ctx.engine.announce(body.event, body.data)
    await ctx.messenger.send_message(OutgoingMessage(destination=ctx.broadcast_destination, text=text))
    logger.info("broadcast_sent", event_name=body.event)
    return {"success": True, "message": text}


# -- keywords --


@admin_router.get("/keywords")
async def list_keywords(ctx: ApiContext = Depends(get_context)) -> list[dict[str, Any]]:
    return [asdict(k) for k in await ctx.admin_repo.list_keywords()]


@admin_router.post("/keywords", status_code=201)
async def create_keyword(body: KeywordIn, ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    keyword_id = await ctx.admin_repo.add_keyword(body.pattern, body.payload, body.kind)
    if not body.enabled:
        await ctx.admin_repo.update_keyword(keyword_id, body.pattern, body.payload, False, body.kind)
    return {"id": keyword_id}


@admin_router.put("/keywords/{keyword_id}")
async def update_keyword(
    keyword_id: int, body: KeywordIn, ctx: ApiContext = Depends(get_context)
) -> dict[str, Any]:
    updated = await ctx.admin_repo.update_keyword(
        keyword_id, body.pattern, body.payload, body.enabled, body.kind
    )
    if not updated:
        raise _not_found("Keyword", keyword_id)
    return {"success": True}


@admin_router.delete("/keywords/{keyword_id}")
async def delete_keyword(keyword_id: int, ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    if not await ctx.admin_repo.delete_keyword(keyword_id):
        raise _not_found("Keyword", keyword_id)
    return {"success": True}


# -- scheduled prompts --


async def _reload_scheduler(ctx: ApiContext) -> dict[str, Any]:
    if ctx.scheduler is None:
        return {"loaded": [], "rejected": {}}
    return asdict(await ctx.scheduler.reload())


@admin_router.get("/scheduled-prompts")
async def list_scheduled_prompts(ctx: ApiContext = Depends(get_context)) -> list[dict[str, Any]]:
    return [asdict(p) for p in await ctx.admin_repo.list_scheduled_prompts()]


@admin_router.post("/scheduled-prompts", status_code=201)
async def create_scheduled_prompt(
    body: ScheduledPromptIn, ctx: ApiContext = Depends(get_context)
) -> dict[str, Any]:
    prompt_id = await ctx.admin_repo.add_scheduled_prompt(
        body.name, body.cron_expression, body.prompt, body.enabled
    )
    await _reload_scheduler(ctx)
    return {"id": prompt_id}


@admin_router.put("/scheduled-prompts/{prompt_id}")
async def update_scheduled_prompt(
    prompt_id: int, body: ScheduledPromptIn, ctx: ApiContext = Depends(get_context)
) -> dict[str, Any]:
    updated = await ctx.admin_repo.update_scheduled_prompt(
        prompt_id, body.name, body.cron_expression, body.prompt, body.enabled
    )
    if not updated:
        raise _not_found("Scheduled prompt", prompt_id)
    await _reload_scheduler(ctx)
    return {"success": True}


@admin_router.delete("/scheduled-prompts/{prompt_id}")
async def delete_scheduled_prompt(prompt_id: int, ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    if not await ctx.admin_repo.delete_scheduled_prompt(prompt_id):
        raise _not_found("Scheduled prompt", prompt_id)
    await _reload_scheduler(ctx)
    return {"success": True}


@admin_router.post("/scheduler/reload")
async def reload_scheduler(ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    return await _reload_scheduler(ctx)


# -- device mappings --


@admin_router.get("/device-mappings")
async def list_device_mappings(ctx: ApiContext = Depends(get_context)) -> list[dict[str, Any]]:
    return [asdict(m) for m in await ctx.admin_repo.list_device_mappings()]


@admin_router.post("/device-mappings", status_code=201)
async def create_device_mapping(
    body: DeviceMappingIn, ctx: ApiContext = Depends(get_context)
) -> dict[str, Any]:
    mapping_id = await ctx.admin_repo.add_device_mapping(
        body.entity_id, body.nickname, body.location, body.category
    )
    return {"id": mapping_id}


@admin_router.put("/device-mappings/{mapping_id}")
async def update_device_mapping(
    mapping_id: int, body: DeviceMappingIn, ctx: ApiContext = Depends(get_context)
) -> dict[str, Any]:
    updated = await ctx.admin_repo.update_device_mapping(
        mapping_id, body.entity_id, body.nickname, body.location, body.category
    )
    if not updated:
        raise _not_found("Device mapping", mapping_id)
    return {"success": True}


@admin_router.delete("/device-mappings/{mapping_id}")
async def delete_device_mapping(mapping_id: int, ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    if not await ctx.admin_repo.delete_device_mapping(mapping_id):
        raise _not_found("Device mapping", mapping_id)
    return {"success": True}


# -- status, logs, system prompt --


@admin_router.get("/status")
async def status(ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    usage = await ctx.conversation_repo.usage_stats()
    return {
        "messenger": {"platform": ctx.messenger.platform_name, "ready": ctx.messenger.is_ready},
        "ai": ctx.engine.status(),
        "scheduler": {
            "running": await ctx.scheduler.health_check() if ctx.scheduler else False,
            "prompt_jobs": len(ctx.scheduler.prompt_job_ids()) if ctx.scheduler else 0,
        },
        "usage": {period: asdict(totals) for period, totals in usage.items()},
    }


@admin_router.get("/logs")
async def logs(
    limit: int = Query(default=100, ge=1, le=1000),
    sender: Optional[str] = None,
    ctx: ApiContext = Depends(get_context),
) -> list[dict[str, Any]]:
    records = await ctx.conversation_repo.recent_actions(limit=limit, sender=sender)
    return [
        {**asdict(r), "created_at": r.created_at.isoformat()}
        for r in records
    ]


@admin_router.get("/system-prompt")
async def get_system_prompt(ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    override = await ctx.admin_repo.get_config(SYSTEM_PROMPT_KEY)
    return {"prompt": await ctx.engine.system_prompt(), "overridden": bool(override)}


@admin_router.put("/system-prompt")
async def put_system_prompt(body: SystemPromptIn, ctx: ApiContext = Depends(get_context)) -> dict[str, Any]:
    if not body.prompt.strip():
        raise ValidationError("prompt must not be empty")
    await ctx.admin_repo.set_config(SYSTEM_PROMPT_KEY, body.prompt.strip())
    logger.info("system_prompt_updated", length=len(body.prompt.strip()))
    return {"success": True}


async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app(ctx: ApiContext) -> FastAPI:
    """Build the FastAPI app bound to the given collaborators."""
    app = FastAPI(title="Noga Bot API", version="0.1.0")
    app.state.ctx = ctx
    app.add_exception_handler(ValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.include_router(webhook_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "messenger_ready": ctx.messenger.is_ready}

    return app
