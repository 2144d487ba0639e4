"""
Database engine and session for the notes server. PostgreSQL in deployment, SQLite for development/tests.
"""
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from notes_server.config import DATABASE_URL, DB_POOL_RECYCLE, DB_POOL_SIZE, DB_POOL_TIMEOUT
from notes_server.models import Base

logger = logging.getLogger(__name__)

# SQLite: in-memory needs StaticPool so all connections share the same DB (for tests)
# File-based SQLite needs check_same_thread=False for FastAPI
if DATABASE_URL.startswith("sqlite:///:memory:"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
elif "sqlite" in DATABASE_URL:
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=DB_POOL_SIZE,
        pool_timeout=DB_POOL_TIMEOUT,
        pool_recycle=DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )
# Rows stay readable after commit; handlers serialize them once the write is done
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db() -> None:
    """Check connectivity and create the notes table if missing."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("Connected to database")
    Base.metadata.create_all(bind=engine)
    logger.info("Notes table ready")


def close_db() -> None:
    """Close all pooled connections (shutdown)."""
    engine.dispose()
    logger.info("Database connection pool closed")


def get_db():
    """Dependency: yield a DB session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
