"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campaign_engine.api.v1.routes import api_router
from campaign_engine.core.config import get_settings
from campaign_engine.infrastructure.storage.database import get_engine, init_schema

load_dotenv()

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Creates missing database tables

    Shutdown:
    - Waits for in-flight message deliveries
    """
    logger.info("Starting Campaign Engine...")
    init_schema(get_engine())
    logger.info(f"Campaign Engine started ({settings.environment})")

    yield  # Application is running

    logger.info("Shutting down Campaign Engine...")
    try:
        from campaign_engine.services.campaign_service import get_campaign_service
        await get_campaign_service().run_processor.wait_for_dispatches()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")

    logger.info("Campaign Engine shutdown complete")


app = FastAPI(
    title="Campaign Engine",
    description="Segment-driven drip campaigns over SMS and email",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": "Campaign Engine API", "status": "running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "campaign_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
