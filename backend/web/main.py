"Educademy backend"
from __future__ import annotations

import logging
import os
import sys
import time

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.identity_access.domain import primary_role
from backend.web import config as _cfg
from backend.web import wiring
from backend.web.auth_utils import SESSION_COOKIE_NAME
from backend.web.envelope import REQUEST_ID_HEADER, failure, request_id
from backend.web.routes.admin import admin_router
from backend.web.routes.instructor import instructor_router
from backend.web.routes.learning import learning_router
from backend.web.routes.notifications import notifications_router
from backend.web.routes.operations import operations_router


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via EDUCADEMY_ENABLE_DOTENV (default true
      outside pytest).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("EDUCADEMY_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()
_cfg.configure_logging()

logger = logging.getLogger("educademy.web")

app = FastAPI(title="Educademy", description="Course authoring, quizzes and learning progress", version="0.1.0")

app.include_router(operations_router)
app.include_router(instructor_router)
app.include_router(learning_router)
app.include_router(notifications_router)
app.include_router(admin_router)


# --- Auth Middleware ------------------------------------------------------------


def _is_public_path(path: str) -> bool:
    return path in ("/health", "/docs", "/openapi.json", "/favicon.ico")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = wiring.SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if not rec:
        return failure(request, "UNAUTHENTICATED", "Authentication required", status_code=401)

    # Expose minimal, read-only user context for downstream handlers.
    request.state.user = {
        "sub": rec.sub,
        "name": rec.name,
        "email": rec.email,
        "role": primary_role(rec.roles),
        "roles": list(rec.roles),
    }
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "private, no-store"
    return response


# --- Request Context Middleware -----------------------------------------------
# Registered last so it runs first: request id and timer exist for every handler.


@app.middleware("http")
async def request_context(request: Request, call_next):
    request.state.started_at = time.perf_counter()
    rid = request_id(request)
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = rid
    return response


# --- Exception Handlers -------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return failure(request, "VALIDATION_ERROR", "Invalid request body", status_code=400, details={"errors": errors})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    user = getattr(request.state, "user", None) or {}
    logger.exception(
        "Unhandled error request_id=%s method=%s path=%s sub=%s",
        request_id(request),
        request.method,
        request.url.path,
        user.get("sub"),
    )
    return failure(request, "INTERNAL_ERROR", "An unexpected error occurred", status_code=500)
