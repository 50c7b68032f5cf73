import json
import time

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relay.core.db import get_session_factory, init_db
from relay.core.deps import RelayDep
from relay.core.logging import setup_logging
from relay.core.settings import ConfigurationError, get_settings
from relay.domain.transcript import utc_now_iso
from relay.routers import bots, debug, interventions, templates, webhook, ws
from relay.services.n8n_export import N8nDeliveryError
from relay.services.recall_client import RecallApiError, TranscriptNotReadyError
from relay.services.transcript_relay import build_relay

# Initialize
settings = get_settings()
logger = setup_logging()

# Create app
app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Relays live meeting transcripts from meeting bots to browser clients",
)


# Exception handlers
def _serialize_validation_errors(errors: list) -> list:
    """Convert validation errors to JSON-serializable format."""
    serialized = []
    for error in errors:
        serialized_error = {
            "loc": error.get("loc"),
            "msg": str(error.get("msg", "")),
            "type": error.get("type"),
        }
        if "input" in error:
            try:
                json.dumps(error["input"])
                serialized_error["input"] = error["input"]
            except (TypeError, ValueError):
                serialized_error["input"] = str(error["input"])
        serialized.append(serialized_error)
    return serialized


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log the raw body of requests failing validation and return a 422."""
    try:
        body_text = (await request.body()).decode("utf-8")
    except Exception as e:
        body_text = f"<unable to read body: {e}>"

    logger.error(
        "Request failed validation",
        extra={
            "component": "api",
            "operation": "validate",
            "context_data": {
                "path": f"{request.method} {request.url.path}",
                "body": body_text[:2000],
                "errors": _serialize_validation_errors(exc.errors()),
            },
        },
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": _serialize_validation_errors(exc.errors()), "body": body_text},
    )


@app.exception_handler(RecallApiError)
async def recall_error_handler(_request: Request, exc: RecallApiError):
    if isinstance(exc, TranscriptNotReadyError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": str(exc), "details": exc.details},
        )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"error": str(exc), "details": exc.details},
    )


@app.exception_handler(N8nDeliveryError)
async def n8n_error_handler(_request: Request, exc: N8nDeliveryError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc), "details": exc.details},
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(_request: Request, exc: ConfigurationError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": str(exc), "details": {"setting": exc.setting}},
    )


# Request logging middleware with timing
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests with timing information."""
    start_time = time.perf_counter()

    logger.debug(f">>> {request.method} {request.url.path}")

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

    method = request.method
    path = request.url.path
    status_code = response.status_code
    time_str = f"{duration_ms:.2f}ms"

    if duration_ms < 500:
        logger.info(f"<<< {method} {path} - {status_code} [{time_str}]")
    else:
        logger.warning(f"<<< {method} {path} - {status_code} [{time_str}] (slow)")

    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhook.router)
app.include_router(bots.router)
app.include_router(interventions.router)
app.include_router(templates.router)
app.include_router(debug.router)
app.include_router(ws.router)


@app.on_event("startup")
async def startup_event():
    """Create tables and the relay unless one was attached already."""
    logger.info("Starting up...")
    init_db()
    if getattr(app.state, "relay", None) is None:
        app.state.relay = build_relay(settings, get_session_factory())
    logger.info("Relay ready")


@app.on_event("shutdown")
async def shutdown_event():
    relay = getattr(app.state, "relay", None)
    if relay is not None:
        await relay.shutdown()


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.app_name}


@app.get("/api")
async def api_banner(relay: RelayDep):
    return {
        "message": settings.app_name,
        "status": "running",
        "timestamp": utc_now_iso(),
        "activeBots": len(relay.store),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
