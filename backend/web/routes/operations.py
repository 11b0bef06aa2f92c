"""Operations endpoints (unauthenticated liveness and dependency probes)."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request

from backend.cache.store import NullCache
from backend.web import wiring
from backend.web.envelope import success

operations_router = APIRouter(tags=["Operations"])
logger = logging.getLogger("educademy.web")


def _probe(check) -> str:
    try:
        return "ok" if check() else "unavailable"
    except Exception as exc:
        logger.warning("Health probe failed err=%s", exc.__class__.__name__)
        return "unavailable"


@operations_router.get("/health")
async def health(request: Request):
    """
    Report database and cache reachability.

    Permissions:
        None; the response contains no user data.
    """
    database = await asyncio.to_thread(_probe, wiring.get_learning_repo().ping)
    cache = wiring.get_cache()
    cache_status = "disabled" if isinstance(cache, NullCache) else await asyncio.to_thread(_probe, cache.ping)
    body = {"status": "healthy" if database == "ok" and cache_status != "unavailable" else "degraded", "database": database, "cache": cache_status}
    return success(request, body, message="Service health")
