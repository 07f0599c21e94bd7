"""
FastAPI application for the Business Registration Form Detector.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
import logging

from bizform.config import Config
from bizform.models import HealthResponse
from bizform.routes.detection import get_pipeline, router as detection_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Business Registration Form Detector API",
    description="API for detecting and classifying fields on government business registration forms",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(detection_router)


@app.on_event("startup")
async def startup_event():
    """Validate configuration and load the common pattern table on startup."""
    try:
        Config.validate()
        logger.info("Configuration validated successfully")
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise

    store = get_pipeline().store
    common = store.load_common()
    regions = store.available_regions()
    logger.info(
        f"Pattern knowledge ready: {len(common)} common categories, "
        f"region overrides: {', '.join(r.upper() for r in regions) or 'none'}"
    )
    for diagnostic in common.diagnostics:
        logger.warning(f"Pattern knowledge: {diagnostic}")


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now()
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "Internal server error"}}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bizform.main:app",
        host=Config.API_HOST,
        port=Config.API_PORT,
        reload=True
    )
