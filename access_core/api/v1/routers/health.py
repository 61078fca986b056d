from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from access_core.core.health import live_payload, ready_payload
from access_core.core.limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live(request: Request) -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
@limiter.exempt
async def health_ready(request: Request) -> JSONResponse:
    payload = await ready_payload()
    return JSONResponse(status_code=200 if payload["ready"] else 503, content=payload)
