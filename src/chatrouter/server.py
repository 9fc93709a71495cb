import asyncio
import logging
import os
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .errors import ConfigurationError
from .metrics import MetricsLogger
from .prompting import build_messages, resolve_image_refs
from .providers import ProviderRegistry
from .router import ModelRouter, StickyPreference, load_config
from .store import ChatStore
from .types import AUTO_SELECTION, ChatSendRequest, RouterRequest

logger = logging.getLogger(__name__)

app = FastAPI(title="chat-router")

PROJECT_ROOT = os.path.join(os.path.dirname(os.path.dirname(__file__)), "..")
CONFIG_DIR = os.environ.get("CHAT_CONFIG_DIR", os.path.join(PROJECT_ROOT, "config"))

TRUTHY_VALUES: frozenset[str] = frozenset({"1", "true", "yes", "on"})
FALSY_VALUES: frozenset[str] = frozenset({"0", "false", "no", "off"})

USER_HEADER = "x-user-id"
PROM_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
ERROR_REPLY_PREFIX = "Sorry, I encountered an error processing your request: "


def _env_var_as_bool(name: str, *, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if not normalized:
        return default
    if normalized in TRUTHY_VALUES:
        return True
    if normalized in FALSY_VALUES:
        return False
    return default


def _env_var_as_int(name: str, *, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _parse_env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


USE_DUMMY: bool = _env_var_as_bool("CHAT_USE_DUMMY")
ALLOWED_ORIGINS = _parse_env_list(os.environ.get("CHAT_CORS_ALLOW_ORIGINS", ""))
UPLOAD_DIR = os.environ.get("CHAT_UPLOAD_DIR", os.path.join(PROJECT_ROOT, "public", "uploads"))
METRICS_DIR = os.environ.get("CHAT_METRICS_DIR", os.path.join(PROJECT_ROOT, "metrics"))

cfg = load_config(CONFIG_DIR, use_dummy=USE_DUMMY)
MODEL_TIMEOUT_MS: int = _env_var_as_int("CHAT_MODEL_TIMEOUT_MS", default=cfg.defaults.timeout_ms)
SYSTEM_PROMPT: str | None = os.environ.get("CHAT_SYSTEM_PROMPT") or cfg.defaults.system_prompt

providers = ProviderRegistry(cfg.providers)
metrics = MetricsLogger(METRICS_DIR)
router = ModelRouter(
    cfg.models,
    providers,
    preference=StickyPreference(),
    timeout_ms=MODEL_TIMEOUT_MS,
    metrics=metrics,
)
store = ChatStore()

if ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


class ModelInfo(BaseModel):
    id: str
    object: Literal["model"] = "model"
    name: str
    priority: int | None = None
    provider: str | None = None


class ModelListResponse(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelInfo]


def _require_user(req: Request) -> str:
    user_id = (req.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


@app.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {
        "status": "ok",
        "models": [candidate.id for candidate in router.catalog],
        "preferred_model": router.preference.get(),
    }


@app.get("/v1/models", response_model=ModelListResponse)
async def list_models() -> ModelListResponse:
    models = [ModelInfo(id=AUTO_SELECTION, name="Auto")]
    for candidate in sorted(router.catalog, key=lambda c: c.priority):
        models.append(
            ModelInfo(
                id=candidate.id,
                name=candidate.name,
                priority=candidate.priority,
                provider=candidate.provider,
            )
        )
    return ModelListResponse(data=models)


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    return Response(metrics.render(), media_type=PROM_CONTENT_TYPE)


@app.get("/api/chats")
async def list_chats(req: Request) -> list[dict[str, Any]]:
    user_id = _require_user(req)
    return [chat.summary() for chat in store.list_chats(user_id)]


@app.get("/api/chat/{chat_id}")
async def get_chat(chat_id: str, req: Request) -> dict[str, Any]:
    user_id = _require_user(req)
    chat = store.get_chat(user_id, chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat.to_dict()


@app.delete("/api/chat/{chat_id}")
async def delete_chat(chat_id: str, req: Request) -> dict[str, str]:
    user_id = _require_user(req)
    store.delete_chat(user_id, chat_id)
    return {"message": "Chat deleted"}


async def _generate_reply(messages: list[Any], selection: str, image_refs: list[str]) -> tuple[str, str | None]:
    try:
        outcome = await router.route(
            RouterRequest(messages=messages, selection=selection, image_refs=image_refs)
        )
    except ConfigurationError as exc:
        logger.error(f"chat configuration error detail={exc}")
        return f"{ERROR_REPLY_PREFIX}{exc}", None
    if outcome.success:
        return outcome.response or "", outcome.model_used
    logger.error(f"chat routing failed selection={selection} detail={outcome.error}")
    return f"{ERROR_REPLY_PREFIX}{outcome.error}", None


@app.post("/api/chat")
async def send_message(req: Request, body: ChatSendRequest) -> dict[str, Any]:
    user_id = _require_user(req)
    text = body.message or ""
    if not text and not body.attachments:
        raise HTTPException(status_code=400, detail="Message or attachment required")
    try:
        if body.chat_id:
            chat = store.get_chat(user_id, body.chat_id)
            if chat is None:
                raise HTTPException(status_code=404, detail="Chat not found")
        else:
            chat = store.create_chat(user_id, text)
        history = chat.history()
        user_message = store.add_message(chat, "user", text, attachments=body.attachments)
        image_refs = await asyncio.to_thread(resolve_image_refs, body.attachments, UPLOAD_DIR)
        if image_refs:
            logger.info(f"chat sending {len(image_refs)} image(s) chat_id={chat.id}")
        messages = build_messages(SYSTEM_PROMPT, history, text, image_refs)
        reply, model_used = await _generate_reply(messages, body.model, image_refs)
        assistant_message = store.add_message(chat, "assistant", reply, model_used=model_used)
        store.touch(chat, text)
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception(f"chat error user={user_id}: {exc}")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {
        "chatId": chat.id,
        "userMessage": user_message.to_dict(),
        "assistantMessage": assistant_message.to_dict(),
        "modelUsed": model_used,
    }
