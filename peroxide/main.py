import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from peroxide.api.middleware.logging import RequestLoggingMiddleware
from peroxide.api.middleware.upload_limit import UploadSizeLimitMiddleware
from peroxide.api.routes.scans import router as scans_router
from peroxide.config import Settings, get_settings
from peroxide.core.detector import IndicatorDetector
from peroxide.core.progress import ProgressNotifier
from peroxide.core.registry import ScanRegistry
from peroxide.services.scans import ScanService
from peroxide.services.uploads import UploadStore
from peroxide.workers.scan_worker import ScanWorker

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application and wire the scan pipeline onto ``app.state``.

    The registry, worker, notifier and upload store are created here and
    shared by reference; no component reaches for a module-level global.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="PEroxide API",
        description="Asynchronous file scanning with streamed progress",
        version="1.0.0",
        debug=settings.debug,
    )

    # Innermost: oversized upload bodies are refused before multipart parsing.
    app.add_middleware(UploadSizeLimitMiddleware, max_upload_bytes=settings.max_upload_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(scans_router)

    registry = ScanRegistry()
    worker = ScanWorker(
        registry,
        [IndicatorDetector(custom_rules_path=settings.indicator_rules_path)],
        settle_delay=settings.scan_settle_delay_seconds,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.scan_service = ScanService(registry, worker)
    app.state.notifier = ProgressNotifier(
        registry, poll_interval=settings.progress_poll_interval_seconds
    )
    app.state.upload_store = UploadStore(
        upload_dir=settings.upload_dir,
        max_upload_bytes=settings.max_upload_bytes,
    )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.get("/healthz", tags=["health"])
    async def health_check() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.on_event("startup")
    async def startup_event() -> None:
        logger.info("PEroxide API starting up")
        settings.upload_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Upload directory: %s", settings.upload_dir)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        pending = app.state.scan_service.active_tasks
        if pending:
            logger.warning("Shutting down with %d scan(s) still running", pending)
        logger.info("PEroxide API shutting down")

    return app


app = create_app()
