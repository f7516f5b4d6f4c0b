"""
Document store contract and implementations.

Collection and field names are shared with the mobile client and must not change:

users/<userId>:
    stripeCustomerId, trainingProgramStatus, currentProgramId,
    programPurchaseDate, subscriptionStatus, subscriptionExpiry,
    createdAt, updatedAt
training_programs/<autoId>:
    userId, program, price, currency, purchaseDate, isActive,
    stripePaymentIntentId, createdAt, updatedAt
"""
import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

USERS = "users"
TRAINING_PROGRAMS = "training_programs"


class _ServerTimestamp:
    """Placeholder resolved to the store's commit time on write."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class DocumentNotFoundError(LookupError):
    """Raised when updating a document that does not exist."""


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document's fields, or None if it does not exist."""
        ...

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """
        Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        ...

    def add(self, collection: str, fields: Dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""
        ...

    def query(self, collection: str, field: str, value: Any, limit: Optional[int] = None) -> List[Tuple[str, Dict[str, Any]]]:
        """Documents whose `field` equals `value`."""
        ...

    def stream(self, collection: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
        """Iterate over every document in the collection."""
        ...


class InMemoryDocumentStore:
    """Thread-safe dict-backed store for local development and tests."""

    def __init__(self, clock=None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.writes: List[Tuple[str, str, str]] = []  # (op, collection, doc_id)

    def _resolve(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        now = self._clock()
        return {k: (now if v is SERVER_TIMESTAMP else copy.deepcopy(v)) for k, v in fields.items()}

    def set(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Create or replace a document (seeding helper)."""
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = self._resolve(fields)
            self.writes.append(("set", collection, doc_id))

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            if doc_id not in docs:
                raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist")
            docs[doc_id].update(self._resolve(fields))
            self.writes.append(("update", collection, doc_id))

    def add(self, collection: str, fields: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = self._resolve(fields)
            self.writes.append(("add", collection, doc_id))
        return doc_id

    def query(self, collection: str, field: str, value: Any, limit: Optional[int] = None) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            matches = [
                (doc_id, copy.deepcopy(doc))
                for doc_id, doc in self._collections.get(collection, {}).items()
                if doc.get(field) == value
            ]
        return matches[:limit] if limit else matches

    def stream(self, collection: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            snapshot = [(doc_id, copy.deepcopy(doc)) for doc_id, doc in self._collections.get(collection, {}).items()]
        return iter(snapshot)


class FirestoreDocumentStore:
    """DocumentStore backed by Cloud Firestore."""

    def __init__(self, client=None, project: Optional[str] = None):
        from google.cloud import firestore

        self._firestore = firestore
        self._client = client or firestore.Client(project=project)

    def _resolve(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return {k: (self._firestore.SERVER_TIMESTAMP if v is SERVER_TIMESTAMP else v) for k, v in fields.items()}

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._client.collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        from google.api_core.exceptions import NotFound

        try:
            self._client.collection(collection).document(doc_id).update(self._resolve(fields))
        except NotFound as e:
            raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist") from e

    def add(self, collection: str, fields: Dict[str, Any]) -> str:
        _, ref = self._client.collection(collection).add(self._resolve(fields))
        return ref.id

    def query(self, collection: str, field: str, value: Any, limit: Optional[int] = None) -> List[Tuple[str, Dict[str, Any]]]:
        from google.cloud.firestore_v1.base_query import FieldFilter

        query = self._client.collection(collection).where(filter=FieldFilter(field, "==", value))
        if limit:
            query = query.limit(limit)
        return [(snap.id, snap.to_dict() or {}) for snap in query.stream()]

    def stream(self, collection: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
        for snap in self._client.collection(collection).stream():
            yield snap.id, snap.to_dict() or {}
