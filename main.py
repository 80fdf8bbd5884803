"""Main FastAPI application"""
import os
import logging
import logging.config
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from database import create_engine_and_sessionmaker, init_db
from routes import router as api_router
from services.storage_service import DEFAULT_EXPIRES_IN, ObjectStorageGateway
from utils.rate_limit import limiter

# Load environment variables from .env before reading any settings
load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": False,
        },
    },
    "loggers": {
        "uvicorn": {
             "handlers": ["default"],
             "level": "INFO",
             "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": { # Root logger for our application
            "handlers": ["default"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./expenses.db")
S3_BUCKET = os.getenv("S3_BUCKET")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL")
SIGNED_URL_EXPIRES = int(os.getenv("SIGNED_URL_EXPIRES", str(DEFAULT_EXPIRES_IN)))
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
MAX_BODY_SIZE = int(os.getenv("MAX_BODY_SIZE", str(64 * 1024)))
API_PREFIX = "/api"
PUBLIC_DIR = Path(__file__).parent / "public"

if not S3_BUCKET:
    logger.warning("S3_BUCKET environment variable not set! Receipt uploads and signed downloads will fail.")

# Application state holding the objects built once at startup
app_state = {}


# --- Middleware for Request Body Size Limit ---
class LimitBodySizeMiddleware(BaseHTTPMiddleware):
    """Rejects oversized JSON bodies on API paths. Receipt bytes never pass through here."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(API_PREFIX):
            content_length_header = request.headers.get("content-length")
            if content_length_header:
                try:
                    content_length = int(content_length_header)
                except ValueError:
                    logger.warning("Request rejected: Invalid Content-Length header.")
                    return error_response("Invalid Content-Length header.", 400)
                if content_length > MAX_BODY_SIZE:
                    logger.warning(f"Request rejected: Body size {content_length} exceeds limit {MAX_BODY_SIZE}.")
                    return error_response(f"Request body exceeds {MAX_BODY_SIZE} bytes.", 413)
        return await call_next(request)


def error_response(message: str, status_code: int) -> JSONResponse:
    """Builds the fixed error envelope."""
    return JSONResponse(status_code=status_code, content={"error": {"message": message}})


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: build the database engine and the storage gateway once
    engine, session_factory = create_engine_and_sessionmaker(DATABASE_URL)
    await init_db(engine)
    app_state["engine"] = engine
    app_state["session_factory"] = session_factory
    app_state["storage"] = ObjectStorageGateway.from_settings(
        bucket=S3_BUCKET,
        region=AWS_REGION,
        endpoint_url=S3_ENDPOINT_URL,
        expires_in=SIGNED_URL_EXPIRES,
    )
    logger.info(f"Configuration: bucket={S3_BUCKET!r} region={AWS_REGION} url_expiry={SIGNED_URL_EXPIRES}s")

    yield # Application runs here

    # Shutdown: dispose of the engine
    logger.info("Closing database engine...")
    await engine.dispose()
    app_state.clear()
    logger.info("Database engine closed.")


app = FastAPI(
    title="Expense Tracker API",
    description="API for recording expenses and attaching receipt images stored in object storage.",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter


# --- Error envelope ---
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed."
    return error_response(message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    # A non-numeric id behaves like an unknown route
    if any(error.get("loc", ())[:1] == ("path",) for error in errors):
        return error_response("Not found", 404)
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid request.")
    logger.info(f"Validation failed on {request.method} {request.url.path}: {errors}")
    return error_response(f"{location}: {message}" if location else message, 400)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
    return error_response(f"Rate limit exceeded: {exc.detail}", 429)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return error_response("An unexpected server error occurred.", 500)


# --- Add Middleware (Order Matters) ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LimitBodySizeMiddleware)

app.include_router(api_router, prefix=API_PREFIX, tags=["api"])

# Mount static files directory (MUST be after API router)
app.mount("/", StaticFiles(directory=PUBLIC_DIR, html=True), name="static")


# Make app state accessible via middleware
@app.middleware("http")
async def add_app_config_to_request(request: Request, call_next) -> Response:
    """Adds the database engine, session factory and storage gateway to the request state."""
    request.state.engine = app_state.get("engine")
    request.state.session_factory = app_state.get("session_factory")
    request.state.storage = app_state.get("storage")
    return await call_next(request)


def run() -> None:
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "false").lower() == "true",
    )


if __name__ == "__main__":
    run()
