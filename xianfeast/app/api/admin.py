"""Admin endpoints: performance statistics and security controls."""

import time
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from xianfeast.app.core.cache import AppCaches
from xianfeast.app.middleware.auth import require_admin
from xianfeast.app.middleware.rate_limit import get_rate_limiter, rate_limit
from xianfeast.app.services.rate_limiter import RateLimitRules

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(rate_limit(RateLimitRules.ADMIN)), Depends(require_admin)],
)

CacheName = Literal["all", "stalls", "products", "orders", "businesses", "users"]


class BlockIPRequest(BaseModel):
    ip: str = Field(min_length=1, max_length=64)
    # None blocks until explicitly unblocked
    duration_seconds: Optional[float] = Field(default=3600.0, gt=0)


class ClearCacheRequest(BaseModel):
    type: CacheName = "all"


def _caches(request: Request) -> AppCaches:
    return request.app.state.caches


def overall_hit_rate(stats: dict[str, dict[str, Any]]) -> float:
    hits = sum(s["hits"] for s in stats.values())
    total = sum(s["hits"] + s["misses"] for s in stats.values())
    return hits / total if total > 0 else 0.0


@router.get("/performance")
async def performance(request: Request, details: bool = False) -> dict[str, Any]:
    """Cache and rate limiting statistics."""
    caches = _caches(request)
    limiter = get_rate_limiter(request)

    cache_stats = {name: cache.get_stats().to_dict() for name, cache in caches.items()}
    limiter_stats = limiter.get_stats()

    response: dict[str, Any] = {
        "timestamp": time.time(),
        "cache": {
            "stats": cache_stats,
            "total_hit_rate": overall_hit_rate(cache_stats),
            "total_size": sum(s["size"] for s in cache_stats.values()),
        },
        "security": {
            "rate_limiting": {
                "blocked_ips": limiter_stats["blocked_ips"],
                "suspicious_ips": limiter_stats["suspicious_ips"],
                "tracked_keys": limiter_stats["tracked_keys"],
                "checks": limiter_stats["checks"],
                "rejections": limiter_stats["rejections"],
            },
        },
    }

    if details:
        response["details"] = {
            "cache_keys": {name: len(cache.keys()) for name, cache in caches.items()},
            "maintenance_runs": request.app.state.maintenance.runs,
        }

    return response


@router.get("/security/blocked-ips")
async def blocked_ips(request: Request) -> dict[str, Any]:
    limiter = get_rate_limiter(request)
    return {
        "blocked": [
            {"ip": ip, "blocked_until": limiter.blocked_until(ip)}
            for ip in limiter.get_blocked_ips()
        ],
        "suspicious": [r.to_dict() for r in limiter.get_suspicious_ips()],
    }


@router.post("/security/block")
async def block_ip(request: Request, body: BlockIPRequest) -> dict[str, Any]:
    limiter = get_rate_limiter(request)
    limiter.block_ip(body.ip, body.duration_seconds)
    return {
        "success": True,
        "ip": body.ip,
        "blocked_until": limiter.blocked_until(body.ip),
    }


@router.delete("/security/block/{ip}")
async def unblock_ip(request: Request, ip: str) -> dict[str, Any]:
    if not get_rate_limiter(request).unblock_ip(ip):
        raise HTTPException(status_code=404, detail=f"IP {ip} is not blocked")
    return {"success": True, "message": f"IP {ip} unblocked"}


@router.post("/cache/clear")
async def clear_cache(request: Request, body: ClearCacheRequest) -> dict[str, Any]:
    caches = _caches(request)
    for name, cache in caches.items():
        if body.type in ("all", name):
            cache.clear()
    return {"success": True, "message": f"Cache cleared: {body.type}"}


@router.post("/maintenance/cleanup")
async def run_cleanup(request: Request) -> dict[str, Any]:
    removed = request.app.state.maintenance.run_once()
    return {"removed": removed, "total": sum(removed.values())}
