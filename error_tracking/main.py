"""
FastAPI application entry point.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from error_tracking.config import settings
from error_tracking.middleware.logging import RequestLoggingMiddleware
from error_tracking.api import errors
from error_tracking.utils.logging import setup_logging, get_logger

# Configure structured logging
setup_logging(settings.log_level)

logger = get_logger(__name__)

# Create FastAPI application
app = FastAPI(
    title="Error Tracking Service",
    description="Error report ingestion, fingerprint grouping and triage API",
    version="0.1.0"
)

# Reports arrive from browsers on any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy", "version": "0.1.0"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Error Tracking Service API",
        "version": "0.1.0",
        "docs": "/docs"
    }


# Include API routers
app.include_router(errors.router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info("Starting Error Tracking Service API")

    await errors.storage.initialize()
    logger.info(f"Error storage initialized ({type(errors.storage).__name__})")

    await errors.rate_limiter.initialize()
    logger.info(f"Rate limiter initialized ({type(errors.rate_limiter).__name__})")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on application shutdown."""
    logger.info("Shutting down Error Tracking Service API")

    await errors.rate_limiter.close()
    logger.info("Rate limiter closed")

    await errors.storage.close()
    logger.info("Error storage closed")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
