from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from realestate.common import redis_available

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", status_code=status.HTTP_200_OK)
async def healthcheck() -> dict[str, str]:
    """Return a simple health status payload."""

    return {"status": "ok"}


@router.get("/ready")
async def readiness(request: Request) -> JSONResponse:
    """Report whether the case store, and redis when configured, answer queries."""

    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "database": "unconfigured"},
        )

    checks: dict[str, str] = {}
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        checks["database"] = "error"
    else:
        checks["database"] = "ok"

    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        checks["redis"] = "ok" if await redis_available(redis) else "error"

    if any(result != "ok" for result in checks.values()):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", **checks},
        )
    return JSONResponse(content={"status": "ok", **checks})
