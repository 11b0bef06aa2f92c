"""
Response envelope shared by every JSON API route.

Success: {success: true, message, data, meta}
Failure: {success: false, message, code, data: null, details?, meta}

`meta` carries the request id (echoed in `X-Request-ID`), the elapsed time as
a string such as "12ms" and an ISO-8601 UTC timestamp. Every response is sent
with `Cache-Control: private, no-store`: API payloads are user-scoped.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from backend.common.errors import DomainError

REQUEST_ID_HEADER = "X-Request-ID"


def request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    if not rid:
        rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:128] or str(uuid.uuid4())
        request.state.request_id = rid
    return rid


def _meta(request: Request) -> Dict[str, Any]:
    started = getattr(request.state, "started_at", None)
    elapsed_ms = int((time.perf_counter() - started) * 1000) if started else 0
    return {
        "requestId": request_id(request),
        "executionTime": f"{elapsed_ms}ms",
        "timestamp": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
    }


def _headers(request: Request) -> Dict[str, str]:
    return {"Cache-Control": "private, no-store", REQUEST_ID_HEADER: request_id(request)}


def success(request: Request, data: Any = None, *, message: str = "OK", status_code: int = 200) -> JSONResponse:
    body = {"success": True, "message": message, "data": data, "meta": _meta(request)}
    return JSONResponse(content=body, status_code=status_code, headers=_headers(request))


def failure(
    request: Request,
    code: str,
    message: str,
    *,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "message": message, "code": code, "data": None}
    if details:
        body["details"] = details
    body["meta"] = _meta(request)
    return JSONResponse(content=body, status_code=status_code, headers=_headers(request))


def domain_failure(request: Request, exc: DomainError) -> JSONResponse:
    return failure(request, exc.code, exc.message, status_code=exc.status, details=exc.details)
