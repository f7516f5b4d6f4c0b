"""
Processed webhook event ledger.

Stripe delivers events at least once. Before a handler runs, the event id
is claimed with an atomic check-and-insert; a second delivery of the same
id finds the claim and is not processed again. A claim is a lease: it can
be taken over once its handler failed (release keeps the error for
inspection) or once it is older than the lease, so a delivery whose worker
outlived the request timeout is retried rather than lost.
"""
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Protocol

from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from coachpay.core.database import create_all_tables, session_scope, webhook_events


class EventLedger(Protocol):
    def claim(
        self, event_id: str, event_type: str, payload_hash: str, now: datetime, lease: Optional[timedelta] = None
    ) -> bool:
        """Record the event id. Returns False if it is processed or held by a live claim."""
        ...

    def mark_processed(self, event_id: str, now: datetime) -> None:
        ...

    def release(self, event_id: str, error: str) -> None:
        """Record a handler failure; the next claim for this id succeeds."""
        ...

    def is_processed(self, event_id: str) -> bool:
        ...

    def purge_expired(self, now: datetime, retention: timedelta) -> int:
        """Drop entries older than the retention window. Returns entries removed."""
        ...


class InMemoryEventLedger:
    """Process-local ledger, used when no DATABASE_URL is configured."""

    def __init__(self):
        self._events: Dict[str, Dict[str, object]] = {}
        self._lock = threading.Lock()

    def claim(
        self, event_id: str, event_type: str, payload_hash: str, now: datetime, lease: Optional[timedelta] = None
    ) -> bool:
        with self._lock:
            existing = self._events.get(event_id)
            if existing is not None:
                if existing["processed"]:
                    return False
                expired = lease is not None and existing["received_at"] <= now - lease
                if existing["error"] is None and not expired:
                    return False
            self._events[event_id] = {
                "event_type": event_type,
                "payload_hash": payload_hash,
                "received_at": now,
                "processed": False,
                "error": None,
            }
            return True

    def mark_processed(self, event_id: str, now: datetime) -> None:
        with self._lock:
            entry = self._events.get(event_id)
            if entry is not None:
                entry["processed"] = True
                entry["processed_at"] = now
                entry["error"] = None

    def release(self, event_id: str, error: str) -> None:
        with self._lock:
            entry = self._events.get(event_id)
            if entry is not None and not entry["processed"]:
                entry["error"] = error or "unknown error"

    def is_processed(self, event_id: str) -> bool:
        with self._lock:
            entry = self._events.get(event_id)
            return bool(entry and entry["processed"])

    def purge_expired(self, now: datetime, retention: timedelta) -> int:
        cutoff = now - retention
        with self._lock:
            expired = [k for k, v in self._events.items() if v["received_at"] < cutoff]
            for key in expired:
                del self._events[key]
        return len(expired)


class SqlEventLedger:
    """Ledger on the webhook_events table; the unique constraint makes claim atomic."""

    def __init__(self, engine: Engine, create_tables: bool = True):
        self.engine = engine
        if create_tables:
            create_all_tables(engine)

    def claim(
        self, event_id: str, event_type: str, payload_hash: str, now: datetime, lease: Optional[timedelta] = None
    ) -> bool:
        try:
            with session_scope(self.engine) as session:
                session.execute(
                    insert(webhook_events).values(
                        event_id=event_id,
                        event_type=event_type,
                        payload_hash=payload_hash,
                        received_at=now,
                        processed=False,
                    )
                )
            return True
        except IntegrityError:
            # Duplicate event_id: UNIQUE constraint violation
            pass

        # A previous attempt failed or its lease ran out: take the claim over (only one retry can win)
        takeover = webhook_events.c.error.is_not(None)
        if lease is not None:
            takeover = or_(takeover, webhook_events.c.received_at <= now - lease)
        with session_scope(self.engine) as session:
            result = session.execute(
                update(webhook_events)
                .where(
                    webhook_events.c.event_id == event_id,
                    webhook_events.c.processed.is_(False),
                    takeover,
                )
                .values(error=None, received_at=now, payload_hash=payload_hash)
            )
            return (result.rowcount or 0) == 1

    def mark_processed(self, event_id: str, now: datetime) -> None:
        with session_scope(self.engine) as session:
            session.execute(
                update(webhook_events)
                .where(webhook_events.c.event_id == event_id)
                .values(processed=True, processed_at=now, error=None)
            )

    def release(self, event_id: str, error: str) -> None:
        with session_scope(self.engine) as session:
            session.execute(
                update(webhook_events)
                .where(webhook_events.c.event_id == event_id, webhook_events.c.processed.is_(False))
                .values(error=error or "unknown error")
            )

    def is_processed(self, event_id: str) -> bool:
        with session_scope(self.engine) as session:
            row = session.execute(
                select(webhook_events.c.processed).where(webhook_events.c.event_id == event_id)
            ).first()
            return bool(row and row[0])

    def purge_expired(self, now: datetime, retention: timedelta) -> int:
        with session_scope(self.engine) as session:
            result = session.execute(
                delete(webhook_events).where(webhook_events.c.received_at < now - retention)
            )
            return result.rowcount or 0
