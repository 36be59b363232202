"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "hangout-scheduler"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness check including calendar API connectivity."""
    checks = {}
    overall_ok = True

    calendar_client = getattr(request.app.state, "calendar_client", None)
    if calendar_client is not None:
        t0 = time.time()
        try:
            health = await calendar_client.health_check()
            checks["google_calendar"] = {
                "ok": bool(health.get("healthy")),
                "latency_ms": round((time.time() - t0) * 1000, 1),
                "api_connectivity": health.get("api_connectivity"),
            }
            overall_ok = overall_ok and bool(health.get("healthy"))
        except Exception as e:
            checks["google_calendar"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False

    return {"overall_ok": overall_ok, "checks": checks}
