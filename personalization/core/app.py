import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from personalization.api.main import api_router
from personalization.services.container import Services

from .config import settings
from .errors import PersonalizationError
from .version import __version__


def configure_logging(level: str | None = None) -> None:
    logger.remove()
    logger.add(sys.stderr, level=(level or settings.LOG_LEVEL).upper())


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, "message": message})


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the FastAPI application. Tests pass their own Services (fake Redis and collaborators).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifespan events (startup/shutdown).
        """
        await app.state.services.start()
        logger.info(f"Personalization service {__version__} started ({settings.APP_ENV})")
        yield
        try:
            await app.state.services.stop()
            logger.info("Personalization service stopped")
        except Exception as exc:
            logger.warning(f"Failed to shut down cleanly: {exc}")

    app = FastAPI(
        title="YouthConnect Personalization",
        description="Activity-driven recommendations, success prediction and interest tuning",
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.APP_ENV != "development" else "/docs",
        redoc_url=None if settings.APP_ENV != "development" else "/redoc",
    )
    app.state.services = services or Services()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PersonalizationError)
    async def personalization_error_handler(request: Request, exc: PersonalizationError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return error_response(exc.status_code, exc.error_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
            for error in exc.errors()
        )
        return error_response(400, "invalid_input", problems or "Invalid request")

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return error_response(500, "internal_error", "An unexpected error occurred")

    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app


configure_logging()
app = create_app()
