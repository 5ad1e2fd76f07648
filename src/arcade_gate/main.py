"""Main entry point for the Arcade Gate application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from arcade_gate.api.v1.dependencies import shutdown_services
from arcade_gate.api.v1.router import api_v1
from arcade_gate.core.logging import configure_logging
from arcade_gate.core.settings import settings

logger = logging.getLogger(__name__)

configure_logging(settings.log_level)

# Initialize FastAPI app
app = FastAPI(
    title="Arcade Gate API",
    description="Session, anti-cheat and ledger gateway for on-chain arcade games",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

app.include_router(api_v1, prefix=settings.api_prefix)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Answer malformed bodies in the same shape as pipeline rejections."""
    logger.warning("Invalid request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": "error", "message": "Invalid request", "reason": "bad_request"},
    )


@app.on_event("startup")
async def on_startup() -> None:
    logger.info(
        "%s %s ready (chain %s, contract %s, store %s)",
        settings.app_name,
        settings.app_version,
        settings.ledger_chain_id,
        settings.contract_address,
        "redis" if settings.redis_url else "memory",
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await shutdown_services()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("arcade_gate.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
