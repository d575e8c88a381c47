from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import redis
from .config import settings

_database_url = settings.get_database_url

if _database_url.startswith("sqlite"):
    # SQLite is used for tests; sessions are shared across worker threads
    engine = create_engine(
        _database_url,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
else:
    engine = create_engine(
        _database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Connections are opened lazily on the first command
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

# Database initialization
def init_db():
    """Initialize database tables."""
    # Import models so every table is registered on Base.metadata
    from ..models import user, patient, doctor, appointment, notification, review  # noqa: F401

    Base.metadata.create_all(bind=engine)
