"""
Liveness, readiness and component health for the corpus API
"""

import os
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
import psutil
import structlog

from sebi_corpus.models.exceptions import VectorStoreException
from sebi_corpus.services import CorpusServices, get_services

logger = structlog.get_logger()
router = APIRouter(prefix="/health", tags=["health"])

STARTED_AT = time.time()
RESOURCE_ALERT_PERCENT = 90


class HealthStatus(BaseModel):
    status: str
    checked_at: str
    uptime_seconds: float


class ComponentReport(HealthStatus):
    """Per-component results plus host resource usage"""
    components: Dict[str, Dict[str, Any]]
    host: Dict[str, Any]


def status_fields(status: str) -> Dict[str, Any]:
    return {
        "status": status,
        "checked_at": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(time.time() - STARTED_AT, 3),
    }


async def check_vector_store(services: CorpusServices) -> Dict[str, Any]:
    try:
        await services.store.ping()
        points = await services.retriever.count_chunks()
    except VectorStoreException as e:
        return {"ok": False, "error": e.message}
    return {"ok": True, "collection": services.retriever.collection_name, "points": points}


def check_embedder(services: CorpusServices) -> Dict[str, Any]:
    # Reports configuration only; never calls the provider
    embedder = services.embedder
    return {
        "ok": True,
        "provider": services.provider.name,
        "dimension": embedder.expected_dimension,
        "cached_vectors": embedder.cache_size,
        "calls_last_minute": embedder.rate_limiter.in_window,
    }


def host_resources() -> Dict[str, Any]:
    try:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage("/")
        return {
            "pid": os.getpid(),
            "cpu_percent": psutil.cpu_percent(interval=0.1),
            "memory_percent": memory.percent,
            "memory_available_mb": round(memory.available / 2**20, 1),
            "disk_percent": disk.percent,
            "disk_free_gb": round(disk.free / 2**30, 2),
        }
    except psutil.Error as e:
        logger.warning("health.host_resources_unavailable", error=str(e))
        return {"error": str(e)}


def resources_strained(host: Dict[str, Any]) -> bool:
    return any(
        host.get(key, 0) > RESOURCE_ALERT_PERCENT
        for key in ("cpu_percent", "memory_percent", "disk_percent")
    )


@router.get("", response_model=HealthStatus)
async def health():
    """Process is up"""
    return status_fields("healthy")


@router.get("/detailed", response_model=ComponentReport)
async def health_detailed(services: CorpusServices = Depends(get_services)):
    """
    Vector store reachability and size, embedder configuration and host
    resources. Any failed component or strained resource reports "degraded".
    """
    components = {
        "vector_store": await check_vector_store(services),
        "embedder": check_embedder(services),
    }
    host = host_resources()

    healthy = all(component["ok"] for component in components.values()) and not resources_strained(host)
    if not healthy:
        logger.warning("health.degraded", components=components)

    return {
        **status_fields("healthy" if healthy else "degraded"),
        "components": components,
        "host": host,
    }


@router.get("/ready")
async def health_ready(response: Response, services: CorpusServices = Depends(get_services)):
    """Readiness: 503 until the vector store answers"""
    try:
        await services.store.ping()
    except VectorStoreException as e:
        logger.error("health.not_ready", error=e.message)
        response.status_code = 503
        return {"status": "not_ready", "reason": e.message}
    return {"status": "ready"}


@router.get("/live")
async def health_live():
    """Liveness: no dependency checks"""
    return status_fields("alive")
