from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from auth_provider.platform.logger import get_logger

logger = get_logger("health")

router = APIRouter()


@router.get("/health", tags=["health"])
async def health_check(request: Request):
    database = getattr(request.app.state, "database", None)
    if database is None:
        db_status = "unconfigured"
    else:
        try:
            async with database.session() as db:
                await db.execute(text("SELECT 1"))
            db_status = "ok"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            db_status = "error"

    healthy = db_status == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ok" if healthy else "degraded",
            "service": request.app.title,
            "database": db_status,
        },
    )
