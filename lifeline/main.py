import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Uvicorn nereden çalışırsa çalışsın .env proje kökünden yüklensin
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from lifeline.api.admin import router as admin_router
from lifeline.api.auth import router as auth_router
from lifeline.api.doctor import router as doctor_router
from lifeline.api.interview import router as interview_router
from lifeline.api.investigations import router as investigations_router
from lifeline.core.config import is_openai_configured, settings
from lifeline.core.database import engine, init_db, ping_db
from lifeline.core.rate_limit import get_client_ip, limiter
from lifeline.logging import setup_logging
from lifeline.models import ErrorLog, SecurityLog
from lifeline.services.ai import AIServiceError
from lifeline.services.workflow import WorkflowError

setup_logging(level=logging.INFO)
log = logging.getLogger("lifeline")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info("OPENAI_API_KEY loaded: %s", "yes" if is_openai_configured() else "NO (set OPENAI_API_KEY=sk-... in .env)")
    yield


app = FastAPI(
    title="Lifeline AI API",
    description="Telehealth clinical investigation service",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    try:
        with Session(engine) as db:
            db.add(SecurityLog(event="rate_limit", ip=get_client_ip(request) or None, endpoint=request.url.path, detail="Rate limit exceeded"))
            db.commit()
    except Exception as e:
        log.warning("SecurityLog rate_limit write failed: %s", e)
    return _error_response(request, 429, "Too many requests. Please wait a minute.")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


def _validation_error_message(exc: RequestValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "Invalid request."
    first = errs[0]
    loc = [str(p) for p in (first.get("loc") or []) if p != "body"]
    msg = first.get("msg") or "Invalid request."
    if first.get("type") == "missing" and loc:
        return f"Missing field: {'.'.join(loc)}."
    if loc:
        return f"{'.'.join(loc)}: {msg}"
    return msg


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning("Request validation error (422): path=%s method=%s detail=%s", request.url.path, request.method, errs)
    rid = getattr(request.state, "request_id", None)
    body = {"error": _validation_error_message(exc), "status_code": 422, "detail": jsonable_errors(errs)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


def jsonable_errors(errs) -> list[dict]:
    # ctx içinde exception nesneleri olabilir; JSON'a çevrilebilir alanlar bırakılır
    return [{"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")} for e in errs]


@app.exception_handler(WorkflowError)
def workflow_exception_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    log.info("workflow rejected: path=%s %s: %s", request.url.path, type(exc).__name__, exc.message)
    return _error_response(request, exc.status_code, exc.message)


@app.exception_handler(AIServiceError)
def ai_exception_handler(request: Request, exc: AIServiceError) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=True)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                request_id=getattr(request.state, "request_id", None),
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Unexpected server error.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(interview_router)
app.include_router(investigations_router)
app.include_router(doctor_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "openai_configured": is_openai_configured(),
        "database": "ok" if ping_db() else "error",
    }
