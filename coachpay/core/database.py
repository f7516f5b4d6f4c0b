"""
Database configuration for the processed-webhook-event ledger.

This module provides:
- SQLAlchemy engine creation with sane pooling defaults
- Session scope context manager
- Table definitions and creation
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def create_engine_for(url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite (tests, local dev) shares a single connection so in-memory
    databases survive across sessions; everything else gets a queue pool.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """
    Context manager for database sessions.

    Usage:
        with session_scope(engine) as session:
            session.execute(...)
    """
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine) -> None:
    """Create all tables defined in metadata (idempotent)."""
    metadata.create_all(engine)


# Processed webhook events (deduplication ledger)
webhook_events = Table(
    'webhook_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_id', String(255), nullable=False),
    Column('event_type', String(100), nullable=False),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of the raw body
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('processed', Boolean, nullable=False, default=False),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    UniqueConstraint('event_id', name='uq_webhook_events_event_id'),
    Index('idx_webhook_events_received_at', 'received_at'),
    Index('idx_webhook_events_processed', 'processed'),
)
