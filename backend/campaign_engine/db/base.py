"""Database base configuration."""
import os
from datetime import datetime
from sqlalchemy import create_engine, event, Column, DateTime
from sqlalchemy.ext.declarative import declared_attr
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from campaign_engine.core.config import settings


class Base(DeclarativeBase):
    """Base class for all database models."""

    @declared_attr
    def __tablename__(cls) -> str:
        """Generate table name from class name."""
        return cls.__name__.lower()

    # Common columns for all tables
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def _sqlite_pragmas(dbapi_connection, connection_record):
    # Dispatcher workers write from several threads; WAL keeps readers unblocked
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Create engine and session
if settings.DB_TYPE == "sqlite":
    if settings.SQLITE_PATH != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(settings.SQLITE_PATH)), exist_ok=True)
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS},
        echo=False
    )
    if settings.SQLITE_PATH != ":memory:":
        event.listen(engine, "connect", _sqlite_pragmas)
else:
    # Lease comparisons rely on committed reads between workers
    engine = create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_size=settings.DISPATCH_CONCURRENCY + 5,
        isolation_level="READ COMMITTED",
        echo=False
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
