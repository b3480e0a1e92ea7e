"""Main FastAPI application for the school payments backend."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from school_api import config
from school_api.errors import SchoolAPIError
from school_api.utils.logging import configure_logging, get_logger

# === Initialization ===
configure_logging()
logger = get_logger("api")

app = FastAPI(title="School Payments API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=True,
)

# === Routers ===
from school_api.endpoints import (  # noqa: E402
    auth,
    messages,
    payment_modal,
    payment_page,
    payments,
    subscriptions,
    users,
)
from school_api.utils import db  # noqa: E402


class RootResponse(BaseModel):
    """Schema describing the payload returned by the API root endpoint."""

    success: bool = Field(..., description="Indicates whether the service is operating normally.")
    message: str = Field(..., description="Short description of the service state.")
    database: str = Field(..., description="Result of the database round-trip.")


class HealthResponse(BaseModel):
    ok: bool = Field(..., description="Indicates whether the process is serving requests.")


@app.on_event("startup")
def ensure_database() -> None:
    """Create the schema before serving; a failure aborts startup."""
    logger.info("Initialising database schema if required")
    db.init_db()
    Path(config.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    logger.info("Database initialisation complete")


# === Router registration ===
app.include_router(users.router)
app.include_router(auth.router)
app.include_router(messages.router)
app.include_router(payments.router)
app.include_router(payment_page.router)
app.include_router(payment_modal.router)
app.include_router(subscriptions.router)

app.mount(
    "/uploads",
    StaticFiles(directory=config.UPLOAD_DIR, check_dir=False),
    name="uploads",
)


# === Health check ===
@app.get("/", response_model=RootResponse)
def root() -> RootResponse:
    """Report whether the database answers a trivial query."""
    db.ping()
    return RootResponse(success=True, message="School payments API is running.", database="ok")


@app.get("/healthz", response_model=HealthResponse)
def healthz() -> HealthResponse:
    logger.debug("Health check endpoint called")
    return HealthResponse(ok=True)


# === Error handlers ===
def _error_body(message: str, detail: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": True, "message": message}
    if detail is not None:
        body["detail"] = detail
    return body


@app.exception_handler(SchoolAPIError)
async def handle_api_error(request: Request, exc: SchoolAPIError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error": exc.message, "detail": exc.detail},
        )
    else:
        logger.warning(
            "Request rejected",
            extra={"path": request.url.path, "status_code": exc.status_code, "error": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg")}
        for error in exc.errors()
    ]
    logger.warning("Request validation failed", extra={"path": request.url.path, "errors": errors})
    return JSONResponse(status_code=400, content=_error_body("Invalid request data", errors))


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP error", extra={"path": request.url.path, "status_code": exc.status_code})
    return JSONResponse(status_code=exc.status_code, content=_error_body(str(exc.detail)))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Return a uniform JSON error response for any unhandled exception."""
    logger.exception("Unhandled exception during request processing", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content=_error_body("Internal server error", str(exc)))


__all__ = ["app"]
