# soulsync/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from soulsync.config import settings
from soulsync.features.chat_import.services.registry import workflow_registry
from soulsync.services.redis_client import redis_client
from soulsync.services.soulsync_api import SoulSyncApiClient
from soulsync.services.token_store import StaticTokenStore

router = APIRouter()


async def redis_ping() -> bool:
    return await redis_client.ping()


async def backend_ping() -> bool:
    client = SoulSyncApiClient(StaticTokenStore())
    try:
        return await client.ping()
    finally:
        await client.close()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "soulsync-import"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check covering Redis and the SoulSync backend.
    """
    checks = {}
    overall_ok = True

    # 1) Redis health check
    t0 = time.time()
    try:
        redis_ok = await redis_ping()
        checks["redis"] = {
            "ok": bool(redis_ok),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Backend reachability
    t0 = time.time()
    try:
        backend_ok = await backend_ping()
        checks["soulsync_api"] = {
            "ok": bool(backend_ok),
            "latency_ms": round((time.time() - t0) * 1000, 1),
            "host": settings.api_host(),
        }
        overall_ok = overall_ok and bool(backend_ok)
    except Exception as e:
        checks["soulsync_api"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    checks["workflows"] = {"ok": True, "active": len(workflow_registry)}

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
