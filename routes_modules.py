import logging
from typing import Callable, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field

import storage
from auth import Identity, register_anonymous, require_authenticated, resolve_identity
from modules import ChatModule, build_modules
from quotas import consume_quota, enforce_quota
from relay import EVENT_CHAT, ModuleId, NotificationRelay
from services.llm_provider import LLMError, LLMProvider

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20


# ----------------------------
# Requests / Responses
# ----------------------------
class HistoryMessage(BaseModel):
    sender: Literal["user", "ai", "model", "assistant"] = "user"
    text: str = ""


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field("", description="Mensaje del usuario.")
    conversation_history: List[HistoryMessage] = Field(
        default_factory=list,
        alias="conversationHistory",
        description="Turnos previos de la conversación (opcional).",
    )


class ChatResponse(BaseModel):
    module: str
    response: str
    recommendation: Optional[str] = None
    usage: int
    limit: int
    is_user_authenticated: bool


class ChatEntryOut(BaseModel):
    id: int
    prompt: str
    response: str
    model: Optional[str] = None
    created_at: str


class HistoryResponse(BaseModel):
    module: str
    message: str
    entries: List[ChatEntryOut]


# ----------------------------
# Dependencias (inyectadas en startup)
# ----------------------------
def get_relay(request: Request) -> NotificationRelay:
    return request.app.state.relay


def get_llm(request: Request) -> LLMProvider:
    return request.app.state.llm


def _module_from(request: Request, module_id: ModuleId) -> ChatModule:
    handle = request.app.state.relay.registry.get(module_id)
    if handle is None:
        raise HTTPException(status_code=503, detail=f"Módulo {module_id.value} no disponible.")
    return handle


def _module_dependency(module_id: ModuleId) -> Callable[[Request], ChatModule]:
    def dependency(request: Request) -> ChatModule:
        return _module_from(request, module_id)

    return dependency


# ----------------------------
# Router por módulo
# ----------------------------
def build_module_router(module_id: ModuleId, slug: str, label: str) -> APIRouter:
    router = APIRouter(prefix=f"/api/{slug}", tags=[label])
    get_module = _module_dependency(module_id)

    @router.post("/chat", response_model=ChatResponse)
    def chat(
        req: ChatRequest,
        response: Response,
        identity: Identity = Depends(resolve_identity),
        module: ChatModule = Depends(get_module),
        relay: NotificationRelay = Depends(get_relay),
        llm: LLMProvider = Depends(get_llm),
    ):
        prompt = (req.prompt or "").strip()
        if not prompt:
            raise HTTPException(status_code=400, detail="El prompt no puede estar vacío.")

        quota = enforce_quota(identity.key, identity.plan, module_id.value, label)

        logger.info("[%s] prompt de %s (%d chars)", label.upper(), identity.display_name, len(prompt))

        history = [m.model_dump() for m in req.conversation_history]
        try:
            answer = llm.generate(module.system_prompt, prompt, history)
        except LLMError as e:
            raise HTTPException(
                status_code=502,
                detail=f"{label} no pudo responder en este momento. Intenta de nuevo más tarde.",
            ) from e
        if not answer:
            answer = module.fallback_reply

        # Lectura-y-borrado del buzón solo cuando ya hay respuesta que entregar
        recommendation = module.take_recommendation(identity.key)

        register_anonymous(identity, response)
        used = consume_quota(identity.key, module_id.value)

        relay.notify(module_id, {"type": EVENT_CHAT, "userId": identity.key, "prompt": prompt})

        storage.db_log_chat(
            module=module_id.value,
            user_key=identity.key,
            user_name=identity.user_name,
            prompt=prompt,
            response=answer,
            conversation=history,
            model=getattr(llm, "model", None),
        )

        return ChatResponse(
            module=module_id.value,
            response=answer,
            recommendation=recommendation,
            usage=used,
            limit=quota["limit"],
            is_user_authenticated=identity.is_authenticated,
        )

    @router.get("/history", response_model=HistoryResponse)
    def history(identity: Identity = Depends(require_authenticated)):
        entries = storage.db_list_chats(identity.key, module_id.value, limit=HISTORY_LIMIT)
        return HistoryResponse(
            module=module_id.value,
            message=f"Historial de {label} para {identity.display_name}:",
            entries=[ChatEntryOut(**e) for e in entries],
        )

    return router


ROUTERS = [build_module_router(m.module_id, m.slug, m.label) for m in build_modules().values()]
