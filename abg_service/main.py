"""
ABG Interpreter Service - FastAPI Backend
Gemini-powered blood gas interpretation and report OCR

Two ways to use it:
  - synchronous: POST /analyze, POST /ocr return the result directly
  - asynchronous: POST /start-analysis, POST /start-ocr return a job id at
    once (202); GET /check-status?id=... polls until complete/failed
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import Settings, get_settings
from .errors import ABGServiceError
from .gemini_client import CompletionClient, get_completion_client
from .job_store import create_job_stores
from .jobs import JobOrchestrator
from .models import ErrorResponse, JobAccepted, JobKind
from .pipeline import execute, prepare_analysis, prepare_ocr
from .rate_limiter import check_rate_limit
from .structured_logging import StructuredLogger, log_request, set_request_id, setup_logging

logger = StructuredLogger("api")

_orchestrator: Optional[JobOrchestrator] = None


def get_app_settings() -> Settings:
    return get_settings()


def get_orchestrator() -> JobOrchestrator:
    """Get or create the job orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        stores = create_job_stores(settings.job_store_backend, settings.job_store_path)
        _orchestrator = JobOrchestrator(stores, settings)
    return _orchestrator


def get_client_provider(settings: Settings = Depends(get_app_settings)) -> Callable[[], CompletionClient]:
    """Deferred client lookup so input validation runs before the API key check."""
    return lambda: get_completion_client(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(level=settings.log_level, use_json=settings.log_json)
    logger.info(
        "Starting ABG Interpreter Service",
        model=settings.gemini_model,
        job_store=settings.job_store_backend,
        api_key_configured=settings.api_key_configured,
    )
    if not settings.api_key_configured:
        logger.warning("GEMINI_API_KEY not set; Gemini endpoints will return 500 until configured.")
    get_orchestrator()
    yield
    logger.info("Shutting down, waiting for running jobs...")
    if _orchestrator is not None:
        await _orchestrator.wait_for_pending()


app = FastAPI(
    title="ABG Interpreter Service",
    description="Blood gas interpretation and report OCR backed by Gemini",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Request-ID"],
)


# --- Error bodies: always {"error": "..."} ---

def _error_response(message: str, status_code: int, headers=None) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=message).model_dump(), status_code=status_code, headers=headers)


@app.exception_handler(ABGServiceError)
async def service_error_handler(request: Request, exc: ABGServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed", error=exc.message, error_type=type(exc).__name__)
    else:
        logger.warning(f"{request.url.path} rejected", error=exc.message, status_code=exc.status_code)
    return _error_response(exc.message, exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(str(exc.detail), exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = str(errors[0].get("msg", "Invalid request")) if errors else "Invalid request"
    return _error_response(message, 400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}", error=str(exc))
    return _error_response("Internal server error", 500)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Middleware for request ID tracking and logging."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
    set_request_id(request_id)

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    if request.url.path not in ["/health", "/docs", "/openapi.json"]:
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            client_ip=request.client.host if request.client else None,
        )

    response.headers["X-Request-ID"] = request_id
    return response


# --- Endpoints ---

@app.get("/health")
async def health_check(settings: Settings = Depends(get_app_settings)):
    orchestrator = get_orchestrator()
    return {
        "status": "healthy",
        "model": settings.gemini_model,
        "apiKeyConfigured": settings.api_key_configured,
        "jobStore": settings.job_store_backend,
        "activeJobs": orchestrator.active_jobs,
    }


@app.post("/analyze")
async def analyze(
    req: Request,
    payload: Any = Body(default=None),
    settings: Settings = Depends(get_app_settings),
    client_provider: Callable[[], CompletionClient] = Depends(get_client_provider),
):
    """Interpret blood gas values (or a report image) and return the analysis."""
    rate_limit_headers = check_rate_limit("analyze", req)
    prepared = prepare_analysis(payload, settings)
    client = client_provider()

    logger.info("Analysis requested", mode=prepared.mode, sample_type=prepared.request.sample_type)
    result = await execute(prepared, client, settings)
    return JSONResponse(result, headers={**rate_limit_headers, "Cache-Control": "no-cache"})


@app.post("/ocr")
async def ocr(
    req: Request,
    payload: Any = Body(default=None),
    settings: Settings = Depends(get_app_settings),
    client_provider: Callable[[], CompletionClient] = Depends(get_client_provider),
):
    """Read blood gas values from a base64 report image."""
    rate_limit_headers = check_rate_limit("ocr", req)
    prepared = prepare_ocr(payload, settings)
    client = client_provider()

    logger.info("OCR requested", image_bytes=len(prepared.image.data), mime_type=prepared.image.mime_type)
    result = await execute(prepared, client, settings)
    return JSONResponse(result, headers={**rate_limit_headers, "Cache-Control": "no-store"})


async def _start_job(
    kind: JobKind,
    endpoint: str,
    req: Request,
    payload: Any,
    orchestrator: JobOrchestrator,
    client_provider: Callable[[], CompletionClient],
) -> JSONResponse:
    rate_limit_headers = check_rate_limit(endpoint, req)
    job_id = await orchestrator.submit(kind, payload, client_provider)
    accepted = JobAccepted(job_id=job_id).model_dump(by_alias=True)
    return JSONResponse(accepted, status_code=202, headers=rate_limit_headers)


@app.post("/start-analysis")
async def start_analysis(
    req: Request,
    payload: Any = Body(default=None),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    client_provider: Callable[[], CompletionClient] = Depends(get_client_provider),
):
    """Submit an analysis job; poll /check-status with the returned jobId."""
    return await _start_job(
        JobKind.ANALYSIS, "start-analysis", req, payload, orchestrator, client_provider
    )


@app.post("/start-ocr")
async def start_ocr(
    req: Request,
    payload: Any = Body(default=None),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    client_provider: Callable[[], CompletionClient] = Depends(get_client_provider),
):
    """Submit an OCR job; poll /check-status with the returned jobId."""
    return await _start_job(
        JobKind.OCR, "start-ocr", req, payload, orchestrator, client_provider
    )


@app.get("/check-status")
async def check_status(
    req: Request,
    id: Optional[str] = None,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Return the stored job record: pending, complete (with data) or failed (with error)."""
    rate_limit_headers = check_rate_limit("check-status", req)
    record = await orchestrator.get_status(id)
    return JSONResponse(record, headers={**rate_limit_headers, "Cache-Control": "no-store"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
