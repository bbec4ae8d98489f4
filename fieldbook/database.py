"""
Database configuration and session management
Sessions live in the hosted Postgres (Supabase); SQLite is used as a fallback for development
"""

import os
import logging
from pathlib import Path
from urllib.parse import urlparse
from dotenv import load_dotenv
from sqlalchemy import create_engine, text, inspect
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator

logger = logging.getLogger(__name__)

# Load environment variables from .env file
# Try multiple paths to find .env file (project root or package dir)
env_paths = [
    Path(__file__).parent.parent / ".env",  # Project root
    Path(__file__).parent / ".env",        # Package directory
    Path(".env"),                           # Current directory
]

for env_path in env_paths:
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)
        break
else:
    load_dotenv()

SQLITE_FALLBACK_URL = "sqlite:///./data/fieldbook.db"

DATABASE_URL = os.getenv("DATABASE_URL") or SQLITE_FALLBACK_URL

# Supabase hands out postgres:// URLs; SQLAlchemy wants the dialect name
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = "postgresql://" + DATABASE_URL[len("postgres://"):]


def describe_database_url(url: str) -> str:
    """Return a loggable description of a database URL (no credentials)"""
    if url.startswith("sqlite"):
        return url
    try:
        parsed = urlparse(url)
        name = parsed.path.lstrip("/").split("?")[0] if parsed.path else "unknown"
        return f"{parsed.scheme}://{name}@{parsed.hostname or 'localhost'}:{parsed.port or 5432}"
    except ValueError:
        return "database"


def build_engine(url: str):
    """Create an engine with the right options for the backend in use"""
    echo = os.getenv("DEBUG", "False").lower() == "true"
    if url.startswith("sqlite"):
        if url.startswith("sqlite:///./"):
            Path("./data").mkdir(exist_ok=True)
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=echo,
            pool_pre_ping=True,
        )
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=1800,  # Supabase pooler drops idle connections
        echo=echo,
    )


engine = build_engine(DATABASE_URL)
logger.info("📦 Using database: %s", describe_database_url(DATABASE_URL))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def check_db_connection() -> bool:
    """Check if database connection is working"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("⚠️  Database connection check failed: %s", e)
        return False


def get_db() -> Generator[Session, None, None]:
    """
    Database dependency for FastAPI

    Usage:
        @router.get("/items")
        async def get_items(db: Session = Depends(get_db)):
            return db.query(Item).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> bool:
    """
    Initialize database - create all tables
    Call this on application startup
    Returns True if successful, False if failed (app keeps serving Acuity-only routes)
    """
    bind = bind or engine
    try:
        # Import models so they're registered with Base
        from fieldbook.models.booking_session import BookingSession  # noqa: F401

        Base.metadata.create_all(bind=bind)

        tables = inspect(bind).get_table_names()
        if "sessions" in tables:
            logger.info("✅ Database initialized - 'sessions' table ready")
        else:
            logger.warning("⚠️  Database initialized but 'sessions' table not found (tables: %s)", tables)
        return True
    except Exception:
        logger.exception("⚠️  Database initialization failed")
        return False
