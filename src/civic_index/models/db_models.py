"""SQLAlchemy database models for the record projection."""
import datetime
from datetime import timezone
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, String, Text, create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from civic_index.config import config


def _utc_now_naive() -> datetime.datetime:
    # SQLite DateTime columns are naive; values are stored as UTC
    return datetime.datetime.now(timezone.utc).replace(tzinfo=None)


# Create base class for SQLAlchemy models
Base = declarative_base()


class DBRecord(Base):
    """Database copy of a record (the projection reconciled against files)."""
    __tablename__ = "records"
    id = Column(String(255), primary_key=True, index=True)
    title = Column(String(512), nullable=False, index=True)
    type = Column(String(100), nullable=False, index=True)
    status = Column(String(100), default="draft", nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    author = Column(String(255), nullable=False, default="unknown")
    authors = Column(JSON, nullable=False, default=list)
    # "metadata" is reserved on declarative classes, hence the attribute name
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    # Path of the record file relative to the record-store root
    path = Column(String(1024), nullable=True)
    # Database-only workflow state; never written to record files
    workflow_state = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=_utc_now_naive, nullable=False)
    updated_at = Column(DateTime, default=_utc_now_naive, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of record."""
        return f"<Record(id='{self.id}', type='{self.type}', title='{self.title}')>"


def init_db(db_url: Optional[str] = None, timeout: Optional[float] = None) -> Engine:
    """Initialize the database with hardened configuration.

    Applies SQLite settings for crash resilience:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    - A busy timeout so no call blocks indefinitely on a locked database
    - Pool pre-ping to detect stale connections

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured SQLite file.
        timeout: Busy timeout in seconds. Defaults to ``config.db_timeout``.
    """
    url = db_url or config.get_db_url()
    busy_timeout = timeout if timeout is not None else config.db_timeout

    engine = create_engine(
        url,
        connect_args={"timeout": busy_timeout},
        pool_pre_ping=True,
    )

    # Apply WAL mode and other PRAGMA settings on every connection
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)

    # Run migrations for schema updates
    _migrate_add_workflow_state_column(engine)

    return engine


def _migrate_add_workflow_state_column(engine: Engine) -> None:
    """Migration: add the workflow_state column to older projections.

    SQLite doesn't support IF NOT EXISTS for ADD COLUMN, so we check
    the schema first. This is idempotent and safe to run multiple times.
    """
    inspector = inspect(engine)
    columns = [col["name"] for col in inspector.get_columns("records")]

    if "workflow_state" not in columns:
        with engine.connect() as conn:
            conn.execute(text("ALTER TABLE records ADD COLUMN workflow_state VARCHAR(100)"))
            conn.commit()


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine)
