"""Database connection and session management."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from src.database.models import Base
from src.utils.config import config


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections are shared across worker threads."""
    is_sqlite = "sqlite" in database_url
    new_engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )
    if is_sqlite:
        @event.listens_for(new_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()
    return new_engine


# Create database engine
engine = build_engine(config.database.database_url, config.database.echo)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine | None = None) -> None:
    """Initialize database schema."""
    Base.metadata.create_all(bind=bind or engine)

