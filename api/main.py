"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from api.routes import health, imports
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.exceptions import ImportPipelineError
from core.logging import setup_logging
from ingestion.scheduler import ImportScheduler
from schemas.api import ErrorResponse
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Clinic Import API",
    description="Bulk import, normalization and duplicate review for clinic listings",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Executes runs queued by POST /imports
scheduler = ImportScheduler()


# Include routers
app.include_router(health.router)
app.include_router(imports.router)


@app.exception_handler(ImportPipelineError)
async def pipeline_error_handler(request: Request, exc: ImportPipelineError):
    """Unhandled pipeline errors (store failures etc.) as 500 with context"""
    logger.error(
        f"[{getattr(request.state, 'request_id', '-')}] {exc.message}",
        extra={"error_context": exc.to_dict()}
    )
    body = ErrorResponse(error=exc.message, detail=exc.to_dict())
    return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Clinic Import API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.SCHEDULER_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Clinic Import API")
    if settings.SCHEDULER_ENABLED:
        scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Clinic Import API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "imports": "/imports",
            "duplicates": "/imports/{run_id}/duplicates",
            "decisions": "/imports/{run_id}/decisions"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
