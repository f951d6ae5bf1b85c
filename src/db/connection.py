"""Database connection management for the CargoPulse server.

Provides synchronous database access using SQLAlchemy. Supports SQLite
for development with a PostgreSQL migration path for production.

Usage:
    # Sync (for FastAPI Depends)
    from src.db.connection import get_db, init_db

    init_db()  # Create tables
    db = next(get_db())
    # ... use db session
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from src.db.models import Base

logger = logging.getLogger(__name__)


# Configuration
def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. CARGOPULSE_DB_PATH (converted to sqlite URL)
    3. sqlite:///<user data dir>/cargopulse.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("CARGOPULSE_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    from src.utils.paths import get_default_db_path
    return f"sqlite:///{get_default_db_path()}"


def _sql_echo_enabled() -> bool:
    return os.environ.get("SQL_ECHO", "").lower() == "true"


# Engine creation
DATABASE_URL = get_database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {},
    echo=_sql_echo_enabled(),
)


# Enable foreign keys for SQLite
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Configure SQLite pragmas for correctness and concurrency.

    Enables:
    - foreign_keys=ON: Referential integrity (disabled by default in SQLite).
    - journal_mode=WAL: Concurrent readers with a single writer, so status
      callbacks do not block intake syncs.
    - synchronous=NORMAL: Commits are durable after WAL fsync.
    """
    if DATABASE_URL.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.close()


# Session factories
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


# Dependency functions for FastAPI


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for synchronous operations.

    Intended for use with FastAPI's Depends() for request-scoped sessions.

    Usage:
        @router.get("/shipments/{shipment_id}")
        def get_shipment(shipment_id: str, db: Session = Depends(get_db)):
            return db.get(Shipment, shipment_id)

    Yields:
        Session: SQLAlchemy session that will be closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Context managers for manual session management


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database sessions outside of FastAPI.

    Usage:
        with get_db_context() as db:
            member = db.query(OrgMember).first()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# Initialization functions


def _ensure_columns_exist(conn: Any) -> None:
    """Add columns and indexes introduced after first release (SQLite only).

    Uses PRAGMA table_info to introspect columns and ALTER TABLE to add
    missing ones. Idempotent, safe to call on every startup.

    Args:
        conn: SQLAlchemy Connection.

    Raises:
        OperationalError: For non-duplicate-column DDL failures (locked DB,
            malformed SQL, etc.).
    """
    if conn.dialect.name != "sqlite":
        return

    result = conn.execute(text("PRAGMA table_info(client_sync_events)"))
    existing = {row[1] for row in result.fetchall()}

    migrations: list[tuple[str, str]] = [
        (
            "tracking_code",
            "ALTER TABLE client_sync_events ADD COLUMN tracking_code VARCHAR(20)",
        ),
        (
            "kind",
            "ALTER TABLE client_sync_events ADD COLUMN kind VARCHAR(30) "
            "NOT NULL DEFAULT 'intake_create'",
        ),
        (
            "claimed_at",
            "ALTER TABLE client_sync_events ADD COLUMN claimed_at VARCHAR(50)",
        ),
    ]

    for col_name, ddl in migrations:
        if col_name not in existing:
            try:
                conn.execute(text(ddl))
            except OperationalError as e:
                if "duplicate column" in str(e).lower():
                    logger.debug("Column %s already exists (concurrent add).", col_name)
                else:
                    logger.error("Failed to add column %s: %s", col_name, e)
                    raise

    # CREATE INDEX IF NOT EXISTS is safe to run repeatedly and covers
    # databases created before the delivered-once index existed.
    try:
        conn.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_message_logs_delivered_once "
                "ON message_logs (org_id, shipment_id, status) "
                "WHERE status = 'delivered'"
            )
        )
    except OperationalError as e:
        logger.warning("message_logs delivered-once index creation failed: %s", e)


def init_db() -> None:
    """Create all database tables synchronously.

    Uses the Base.metadata from models.py to create all defined tables.
    Safe to call multiple times - will not recreate existing tables.
    Runs column migration for new columns on existing tables.
    """
    Base.metadata.create_all(bind=engine)
    with engine.begin() as conn:
        _ensure_columns_exist(conn)


# Cleanup functions


def close_db() -> None:
    """Close the sync engine and dispose of connection pool."""
    engine.dispose()
