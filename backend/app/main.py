"""
SSC Review API - FastAPI backend for the scholarship screening workflow
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

from app import database
from app.routers import applications, auth, health, ssc
from app.security import setup_security

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    logger.info("SSC Review API started")
    yield
    if database.engine is not None:
        await database.engine.dispose()
    logger.info("SSC Review API shutdown complete")


app = FastAPI(
    title="SSC Review API",
    description="Scholarship Screening Committee parallel review workflow",
    version="1.0.0",
    lifespan=lifespan,
)

# =============================================================================
# CORS Configuration
# =============================================================================
# Production accepts HTTPS origins only; development allows localhost.

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

if ENVIRONMENT == "production":
    default_origins = "https://scholarship.example.gov"
    ALLOWED_ORIGINS = []
    for origin in os.getenv("ALLOWED_ORIGINS", default_origins).split(","):
        origin = origin.strip()
        if not origin:
            continue
        if not origin.startswith("https://") or "localhost" in origin or "127.0.0.1" in origin:
            logger.warning("[CORS] Rejecting origin in production: %s", origin)
            continue
        ALLOWED_ORIGINS.append(origin)

    if not ALLOWED_ORIGINS:
        ALLOWED_ORIGINS = [default_origins]
        logger.warning("[CORS] No valid origins configured, using default production origin")
else:
    default_origins = "http://localhost:3000,http://localhost:5173"
    ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.getenv("ALLOWED_ORIGINS", default_origins).split(",")
        if origin.strip()
    ]

if not ALLOWED_ORIGINS:
    raise ValueError("CORS configuration error: No valid allowed origins configured")

logger.info("[CORS] Environment: %s, allowed origins: %s", ENVIRONMENT, ALLOWED_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
)

# Compresses responses larger than 500 bytes
app.add_middleware(GZipMiddleware, minimum_size=500)

# =============================================================================
# Security Middleware Setup
# =============================================================================
# Must be called after the CORS middleware is added (order matters)
setup_security(app, ALLOWED_ORIGINS)

# =============================================================================
# Routers
# =============================================================================
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(applications.router)
app.include_router(ssc.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
