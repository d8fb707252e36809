"""
BlueCarbon Ledger - Database Configuration
SQLAlchemy engine and session factory (SQLite locally, PostgreSQL in production)
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL


def build_engine(url: str):
    """Create an engine; SQLite connections are shared across worker threads."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=False, connect_args=connect_args)


# Create engine
engine = build_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def get_db():
    """Dependency for FastAPI - yields database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database - create all tables."""
    # Import models so every table is registered on Base.metadata
    from .models import db_models  # noqa: F401
    Base.metadata.create_all(bind=engine)
