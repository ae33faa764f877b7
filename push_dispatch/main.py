from contextlib import asynccontextmanager
from typing import Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from push_dispatch.api.health import router as health_router
from push_dispatch.api.notifications import router as notifications_router
from push_dispatch.config import ConfigurationError, Settings, load_settings
from push_dispatch.logging_config import configure_logging, get_logger
from push_dispatch.models.response import error_response
from push_dispatch.services.pipeline import PipelineResources

logger = get_logger(__name__)

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", "idempotency-key"]


def _load() -> Tuple[Optional[Settings], Optional[ConfigurationError]]:
    try:
        return load_settings(), None
    except ConfigurationError as e:
        return None, e


def create_app(
    settings: Optional[Settings] = None,
    config_error: Optional[ConfigurationError] = None
) -> FastAPI:
    if settings is not None:
        configure_logging(settings.log_level, settings.service_name)
    else:
        configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown event handler"""
        if settings is None:
            # Keep serving so every invocation reports the configuration error
            logger.error(f"Starting without configuration: {config_error}")
            yield
            return

        logger.info("Starting push-dispatch-service")
        resources = PipelineResources(settings)
        try:
            app.state.pipeline = await resources.start()
            app.state.resources = resources
            logger.info("Pipeline initialization complete")
        except Exception as e:
            logger.error(f"Pipeline initialization failed: {e}")
            await resources.stop()
            raise

        yield

        logger.info("Shutting down push-dispatch-service")
        await resources.stop()

    app = FastAPI(
        title="push-dispatch-service",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.config_error = config_error
    app.state.pipeline = None
    app.state.resources = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins if settings else ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=CORS_ALLOW_HEADERS,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        logger.warning(f"Rejected request to {request.url.path}: {errors}")
        return JSONResponse(
            status_code=400,
            content=error_response(error=errors, message="Invalid request").model_dump(mode="json")
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_exception_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error: {exc}")
        return JSONResponse(
            status_code=500,
            content=error_response(error=str(exc), message="Service misconfigured").model_dump(mode="json")
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=error_response(error=str(exc), message="Internal server error").model_dump(mode="json")
        )

    @app.get("/")
    def index():
        return {"message": "Push Dispatch API running"}

    app.include_router(health_router)
    app.include_router(notifications_router)
    return app


app = create_app(*_load())
