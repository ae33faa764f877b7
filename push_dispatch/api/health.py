from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from push_dispatch.logging_config import get_logger
from push_dispatch.models.response import success_response, error_response

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """
    Health check for service dependencies.
    Reports PostgreSQL and Redis status in the standard envelope.
    """
    health_data = {
        "service": "push-dispatch-service",
        "configuration": "ok",
        "database": "unknown",
        "redis": "disabled"
    }
    all_healthy = True

    config_error = getattr(request.app.state, "config_error", None)
    if config_error is not None:
        health_data["configuration"] = str(config_error)
        all_healthy = False

    resources = getattr(request.app.state, "resources", None)

    # Check PostgreSQL
    try:
        if resources is None or resources.db_pool.pool is None:
            health_data["database"] = "disconnected: pool not initialized"
            all_healthy = False
        else:
            async with resources.db_pool.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            health_data["database"] = "connected"
            logger.debug("PostgreSQL health check: OK")
    except Exception as e:
        health_data["database"] = f"disconnected: {str(e)}"
        all_healthy = False
        logger.error(f"PostgreSQL health check failed: {e}")

    # Check Redis (optional dependency)
    idempotency = getattr(resources, "idempotency", None)
    if idempotency is not None and idempotency.redis_client is not None:
        try:
            await idempotency.ping()
            health_data["redis"] = "connected"
            logger.debug("Redis health check: OK")
        except Exception as e:
            health_data["redis"] = f"disconnected: {str(e)}"
            all_healthy = False
            logger.error(f"Redis health check failed: {e}")

    if all_healthy:
        return success_response(data=health_data, message="All services healthy")
    return JSONResponse(
        status_code=503,
        content=error_response(
            error="One or more services unavailable",
            message="Service health check degraded",
            data=health_data
        ).model_dump(mode="json")
    )
