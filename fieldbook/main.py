"""
Dog Field Booking - Main Application
FastAPI backend reconciling Acuity Scheduling appointments with hosted session records
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fieldbook.database import init_db, check_db_connection, SessionLocal
from fieldbook.api.acuity_routes import router as acuity_router
from fieldbook.api.webhooks import router as webhooks_router
from fieldbook.api.sessions import router as sessions_router
from fieldbook.services.session_service import SessionService

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Dog Field Booking API",
    description="Acuity Scheduling bookings for private dog walking fields",
    version="1.0.0",
)

cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(acuity_router)
app.include_router(webhooks_router)
app.include_router(sessions_router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup"""
    logger.info("🚀 Starting Dog Field Booking API...")
    if not init_db():
        logger.warning("   Continuing without session storage (database not available)")
    logger.info("✅ System ready!")


@app.get("/")
async def root():
    return {
        "status": "healthy",
        "service": "Dog Field Booking API",
        "version": "1.0.0",
    }


@app.get("/health")
async def health():
    """Database connectivity and session counts"""
    database_ok = check_db_connection()
    counts = {}
    if database_ok:
        db = SessionLocal()
        try:
            counts = SessionService(db).count_by_status()
        finally:
            db.close()
    return {
        "status": "healthy" if database_ok else "degraded",
        "database": "connected" if database_ok else "unavailable",
        "sessions": counts,
    }
