"""SQLModel backed document store for the ChorePoints web API."""
from __future__ import annotations

import json
import threading
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..exceptions import TransactionConflictError, ValidationError
from ..models import Document, utcnow
from ..store import (
    DEFAULT_MAX_WRITES,
    DocumentStore,
    FieldFilter,
    Subscription,
    SubscriptionHub,
    Transaction,
    apply_query,
)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class DocumentRecord(SQLModel, table=True):
    __tablename__ = "documents"

    collection: str = Field(primary_key=True)
    doc_id: str = Field(primary_key=True)
    data: str
    version: int = Field(default=0, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class MetaKV(SQLModel, table=True):
    k: str = Field(primary_key=True)
    v: str


VERSION_CLOCK_KEY = "document_version_clock"


def build_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""

    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                database_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(database_url, echo=False)


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def _encode(data: Document) -> str:
    return json.dumps(data, sort_keys=True, default=str)


def _decode(raw: str) -> Document:
    return json.loads(raw)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class SqlDocumentStore(DocumentStore):
    """Documents stored as JSON rows keyed by ``(collection, doc_id)``.

    Every write stamps the row with a store-wide increasing version, so a
    document that was deleted and re-created never looks unchanged to a
    transaction that read it earlier.
    """

    def __init__(self, engine: Engine, *, max_writes_per_transaction: int = DEFAULT_MAX_WRITES) -> None:
        if max_writes_per_transaction <= 0:
            raise ValidationError("max_writes_per_transaction must be positive.")
        self.engine = engine
        self.max_writes_per_transaction = max_writes_per_transaction
        self._commit_lock = threading.RLock()
        self._hub = SubscriptionHub(self._run_query)
        create_db_and_tables(engine)

    @classmethod
    def from_url(cls, database_url: str, **kwargs: Any) -> "SqlDocumentStore":
        return cls(build_engine(database_url), **kwargs)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        data, _ = self._read_versioned(collection, doc_id)
        if data is None:
            return None
        data["id"] = doc_id
        return data

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with Session(self.engine) as session:
            records = session.exec(select(DocumentRecord).where(DocumentRecord.collection == collection)).all()
            documents = []
            for record in records:
                document = _decode(record.data)
                document["id"] = record.doc_id
                documents.append(document)
        return apply_query(documents, filters, order_by=order_by, descending=descending, limit=limit)

    def transact(self, body: Callable[[Transaction], T]) -> T:
        txn = Transaction(self._read_versioned, max_writes=self.max_writes_per_transaction)
        result = body(txn)
        self._commit(txn)
        return result

    def subscribe(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        listener: Optional[Callable[[List[Document]], None]] = None,
    ) -> Subscription:
        return Subscription(self._hub, collection, filters, listener).start()

    def active_subscriptions(self, collection: Optional[str] = None) -> int:
        return self._hub.active_count(collection)

    def _run_query(self, collection: str, filters: Sequence[FieldFilter]) -> List[Document]:
        return self.query(collection, filters)

    def _read_versioned(self, collection: str, doc_id: str) -> Tuple[Optional[Document], int]:
        with Session(self.engine) as session:
            record = session.get(DocumentRecord, (collection, doc_id))
            if record is None:
                return None, 0
            return _decode(record.data), record.version

    def _commit(self, txn: Transaction) -> None:
        writes = txn.writes
        with self._commit_lock, Session(self.engine) as session:
            for (collection, doc_id), seen in txn.reads.items():
                record = session.get(DocumentRecord, (collection, doc_id))
                current = record.version if record is not None else 0
                if current != seen:
                    raise TransactionConflictError(
                        f"{collection}/{doc_id} changed during the transaction "
                        f"(version {seen} -> {current})."
                    )
            if not writes:
                return
            clock = session.get(MetaKV, VERSION_CLOCK_KEY)
            if clock is None:
                latest = session.exec(select(func.max(DocumentRecord.version))).one()
                clock = MetaKV(k=VERSION_CLOCK_KEY, v=str(latest or 0))
            version = int(clock.v)
            moment = utcnow()
            for (collection, doc_id), data in writes.items():
                record = session.get(DocumentRecord, (collection, doc_id))
                if data is None:
                    if record is not None:
                        session.delete(record)
                    continue
                version += 1
                if record is None:
                    record = DocumentRecord(collection=collection, doc_id=doc_id, data="{}")
                record.data = _encode(data)
                record.version = version
                record.updated_at = moment
                session.add(record)
            clock.v = str(version)
            session.add(clock)
            session.commit()
        self._hub.notify({collection for collection, _ in writes})


__all__ = [
    "DocumentRecord",
    "MetaKV",
    "SqlDocumentStore",
    "build_engine",
    "create_db_and_tables",
]
