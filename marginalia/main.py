import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from marginalia import __version__
from marginalia.api.deps import Services, build_services
from marginalia.api.routes import chapters, notes
from marginalia.config import Settings, settings
from marginalia.errors import MarginaliaError, RateLimitExceededError
from marginalia.services.image_notes import IMAGE_URL_PREFIX
from marginalia.services.logger import log_event

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request id, binds it to log records and echoes it back."""

    SKIP_PATHS = {"/api/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"}

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request.state.request_id = request_id

        with logger.contextualize(request_id=request_id):
            start_time = time.perf_counter()
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            if request.url.path not in self.SKIP_PATHS:
                logger.info(
                    f"{request.method} {request.url.path} -> {response.status_code} "
                    f"({duration_ms:.1f}ms)"
                )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _error_body(request: Request, message: str, exc: Exception, config: Settings) -> dict:
    error: dict = {"message": message, "requestId": getattr(request.state, "request_id", None)}
    if not config.is_production:
        error["type"] = type(exc).__name__
    return {"error": error}


def register_exception_handlers(app: FastAPI, config: Settings) -> None:
    @app.exception_handler(MarginaliaError)
    async def marginalia_error_handler(request: Request, exc: MarginaliaError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message} "
                f"(upstream status {exc.upstream_status})"
            )
        else:
            logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")

        body = _error_body(request, exc.message, exc, config)
        headers = None
        if isinstance(exc, RateLimitExceededError):
            body["error"]["retryAfter"] = exc.retry_after
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid request: {location} {first.get('msg', '')}".strip()
        return JSONResponse(status_code=400, content=_error_body(request, message, exc, config))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {type(exc).__name__}")
        message = "Internal server error" if config.is_production else str(exc) or "Internal server error"
        return JSONResponse(status_code=500, content=_error_body(request, message, exc, config))


def create_application(config: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``services`` lets tests inject fakes; otherwise they are built from
    ``config`` at startup.
    """
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        app.state.services = services or build_services(config)
        init_schema = getattr(app.state.services.store, "init_schema", None)
        if init_schema is not None:
            await init_schema()
        elif not config.database_url:
            logger.warning("DATABASE_URL is not set; notes are kept in memory only")
        log_event("startup", "Marginalia API started", environment=config.environment)
        yield
        # Shutdown
        await app.state.services.store.close()

    app = FastAPI(
        title="Marginalia",
        description="Notes augmented with cited, web-sourced elaboration",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestContextMiddleware)

    register_exception_handlers(app, config)

    # Routes
    app.include_router(chapters.router)
    app.include_router(notes.router)

    upload_dir = Path(config.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount(IMAGE_URL_PREFIX, StaticFiles(directory=upload_dir), name="uploads")

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "marginalia", "version": __version__}

    return app


app = create_application()
