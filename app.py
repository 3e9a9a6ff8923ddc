import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

BASE_DIR = Path(__file__).resolve().parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

import storage
from auth import SET_ANONYMOUS_HEADER
from modules import build_modules
from recommendations import register_default_rules
from relay import NotificationRelay
from routes_modules import ROUTERS
from routes_projects import router as projects_router
from routes_users import router as users_router
from services.llm_provider import LLMProvider

logger = logging.getLogger(__name__)

# ----------------------------
# App + env
# ----------------------------
app = FastAPI(title="Millennion BDD")
for _router in ROUTERS:
    app.include_router(_router)
app.include_router(users_router)
app.include_router(projects_router)

ADMIN_SECRET = os.getenv("MILLENNION_ADMIN_SECRET", "")
INBOX_MAX_ENTRIES = int(os.getenv("MILLENNION_INBOX_MAX_ENTRIES", "10000"))
LOG_LEVEL = os.getenv("MILLENNION_LOG_LEVEL", "INFO").upper()


def assert_config_or_die() -> None:
    secret = os.getenv("MILLENNION_JWT_SECRET", "")
    if not secret:
        raise RuntimeError("Faltan variables de entorno: MILLENNION_JWT_SECRET")
    if len(secret) < 16:
        raise RuntimeError("MILLENNION_JWT_SECRET demasiado corto (mínimo 16 caracteres).")


def build_relay(inbox_max_entries: int = INBOX_MAX_ENTRIES) -> NotificationRelay:
    """Registra los tres módulos y la tabla de reglas. Se llama una sola vez en startup."""
    relay = NotificationRelay()
    for module_id, module in build_modules(inbox_max_entries).items():
        relay.register_module(module_id, module)
    register_default_rules(relay)
    return relay


# ----------------------------
# CORS
# ----------------------------
ALLOWED_ORIGINS = os.getenv(
    "MILLENNION_CORS_ORIGINS",
    "https://millennionbdd.com,https://www.millennionbdd.com,http://localhost:5173",
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in ALLOWED_ORIGINS if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[SET_ANONYMOUS_HEADER],
)


# ----------------------------
# Admin (cron job / soporte)
# ----------------------------
def require_admin(x_cron_secret: str = Header(None, alias="X-Cron-Secret")) -> str:
    if not ADMIN_SECRET:
        raise HTTPException(status_code=503, detail="Admin no configurado (falta MILLENNION_ADMIN_SECRET).")
    if not x_cron_secret or x_cron_secret != ADMIN_SECRET:
        raise HTTPException(status_code=403, detail="Acceso denegado. Secreto inválido.")
    return x_cron_secret


class SetPlanRequest(BaseModel):
    plan: str


@app.post("/api/admin/reset-monthly-usage", dependencies=[Depends(require_admin)])
def reset_monthly_usage():
    # Los contadores van por yyyymm: el mes nuevo arranca en cero; aquí solo se purgan meses viejos
    removed = storage.db_purge_old_usage()
    logger.info("[CRON JOB] contadores mensuales purgados: %s", removed)
    return {"ok": True, "removed": removed}


@app.post("/api/admin/users/{user_id}/plan", dependencies=[Depends(require_admin)])
def admin_set_plan(user_id: str, req: SetPlanRequest):
    plan = (req.plan or "").strip().lower()
    if plan not in storage.PLANS:
        raise HTTPException(status_code=422, detail=f"Plan inválido. Solo: {', '.join(storage.PLANS)}.")
    if not storage.db_set_plan(user_id, plan):
        raise HTTPException(status_code=404, detail="Usuario no encontrado.")
    return {"ok": True, "user_id": user_id, "plan": plan}


@app.get("/api/admin/relay", dependencies=[Depends(require_admin)])
def admin_relay(request: Request):
    return request.app.state.relay.snapshot()


# ----------------------------
# Health/ready
# ----------------------------
@app.get("/health")
def health():
    return {"ok": True}


@app.get("/ready")
def ready():
    try:
        assert_config_or_die()
    except RuntimeError:
        raise HTTPException(status_code=500, detail="JWT secret no configurado")
    try:
        with storage.db_conn() as conn:
            conn.execute("SELECT 1")
    except Exception:
        raise HTTPException(status_code=500, detail="DB no disponible")
    return {"ready": True}


# ----------------------------
# Exceptions
# ----------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = None
    try:
        if exc.body is None:
            body = None
        elif isinstance(exc.body, (dict, list, str, int, float, bool)):
            body = exc.body
        elif isinstance(exc.body, (bytes, bytearray)):
            body = exc.body.decode("utf-8", errors="replace")
        else:
            body = str(exc.body)
    except Exception:
        body = "<unserializable>"

    return JSONResponse(
        status_code=422,
        content={
            "detail": jsonable_encoder(exc.errors()),
            "body": body,
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Error interno. Revisa logs del servidor."},
    )


@app.on_event("startup")
def on_startup():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    assert_config_or_die()
    storage.db_init()

    app.state.relay = build_relay()
    if not hasattr(app.state, "llm"):
        app.state.llm = LLMProvider()

    print(f">>> Startup OK | DB={storage.DB_PATH} | modules={len(app.state.relay.registry.ids())}")
