"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..exceptions import ConfigurationError, MetadataNotFoundError, TransportError, describe_error
from .routes import compare, migrations

logger = logging.getLogger(__name__)

app = FastAPI(
    title="OrgSync API",
    description="Metadata comparison and record migration between environments",
    version=__version__,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(compare.router, prefix="/api/compare", tags=["compare"])
app.include_router(migrations.router, prefix="/api/migrations", tags=["migrations"])


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(MetadataNotFoundError)
async def not_found_handler(request: Request, exc: MetadataNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(TransportError)
async def transport_error_handler(request: Request, exc: TransportError):
    logger.error(f"Remote call failed: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": describe_error(exc), "status_code": exc.status_code},
    )


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
