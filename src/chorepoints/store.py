"""Document and object store contracts used by the ChorePoints engines.

The engines only rely on four primitives: ``get``, ``query``, ``transact`` and
``subscribe``. Transactions use optimistic concurrency: every document read
inside ``transact`` remembers the version it saw and the commit fails with
:class:`~chorepoints.exceptions.TransactionConflictError` if any of those
versions changed in the meantime. :func:`run_transaction` retries such
conflicts a bounded number of times.
"""

from __future__ import annotations

import queue
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)
from uuid import uuid4

from .exceptions import (
    NotFoundError,
    PreconditionError,
    RetriesExhaustedError,
    TransactionConflictError,
    ValidationError,
)
from .models import Document

if TYPE_CHECKING:  # pragma: no cover
    from .ops import StructuredLogger

T = TypeVar("T")

DEFAULT_MAX_WRITES = 500
DEFAULT_TRANSACTION_ATTEMPTS = 5

FILTER_OPERATORS = ("==", "!=", "in", "array_contains")


@dataclass(frozen=True, slots=True)
class FieldFilter:
    """A single ``field <op> value`` condition on a document."""

    field: str
    value: Any
    op: str = "=="

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValidationError(f"Unsupported filter operator: {self.op!r}")

    def matches(self, data: Mapping[str, Any]) -> bool:
        current = data.get(self.field)
        if self.op == "==":
            return current == self.value
        if self.op == "!=":
            return current != self.value
        if self.op == "in":
            return current in self.value
        return isinstance(current, list) and self.value in current


def where(field: str, op: str, value: Any) -> FieldFilter:
    return FieldFilter(field=field, value=value, op=op)


def apply_query(
    documents: Iterable[Document],
    filters: Sequence[FieldFilter] = (),
    *,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[Document]:
    """Filter, order and truncate ``documents`` the same way for every store."""

    matches = [doc for doc in documents if all(item.matches(doc) for item in filters)]
    if order_by is not None:
        present = [doc for doc in matches if doc.get(order_by) is not None]
        missing = [doc for doc in matches if doc.get(order_by) is None]
        present.sort(key=lambda doc: doc[order_by], reverse=descending)
        matches = present + missing
    if limit is not None:
        if limit < 0:
            raise ValidationError("limit must not be negative")
        matches = matches[:limit]
    return matches


def _with_id(doc_id: str, data: Mapping[str, Any]) -> Document:
    document = dict(data)
    document["id"] = doc_id
    return document


def _without_id(data: Mapping[str, Any]) -> Document:
    return {key: value for key, value in data.items() if key != "id"}


VersionedReader = Callable[[str, str], Tuple[Optional[Document], int]]


class Transaction:
    """Buffered reads and writes committed together by a :class:`DocumentStore`.

    Version ``0`` stands for "document did not exist" when a read is recorded.
    """

    def __init__(self, reader: VersionedReader, *, max_writes: int = DEFAULT_MAX_WRITES) -> None:
        self._reader = reader
        self._max_writes = max_writes
        self._reads: Dict[Tuple[str, str], int] = {}
        self._writes: Dict[Tuple[str, str], Optional[Document]] = {}

    @property
    def reads(self) -> Mapping[Tuple[str, str], int]:
        return dict(self._reads)

    @property
    def writes(self) -> Mapping[Tuple[str, str], Optional[Document]]:
        return dict(self._writes)

    def read(self, collection: str, doc_id: str) -> Optional[Document]:
        key = (collection, doc_id)
        if key in self._writes:
            staged = self._writes[key]
            return None if staged is None else _with_id(doc_id, staged)
        data, version = self._reader(collection, doc_id)
        self._reads.setdefault(key, version)
        if data is None:
            return None
        return _with_id(doc_id, data)

    def require(self, collection: str, doc_id: str) -> Document:
        document = self.read(collection, doc_id)
        if document is None:
            raise NotFoundError(collection, doc_id)
        return document

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._stage((collection, doc_id), _without_id(data))

    def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> Document:
        current = self.require(collection, doc_id)
        merged = _without_id(current)
        merged.update(_without_id(fields))
        self._stage((collection, doc_id), merged)
        return _with_id(doc_id, merged)

    def delete(self, collection: str, doc_id: str) -> None:
        self._stage((collection, doc_id), None)

    def _stage(self, key: Tuple[str, str], data: Optional[Document]) -> None:
        if key not in self._writes and len(self._writes) >= self._max_writes:
            raise PreconditionError(
                f"Transaction exceeds the limit of {self._max_writes} document writes."
            )
        self._writes[key] = data


class Subscription:
    """Live view of a query that receives the full result set after every change.

    Only the newest undelivered snapshot is kept: a snapshot that nobody has
    read yet is replaced by the next one, so an idle subscriber holds at most
    one result set besides :meth:`latest`.
    """

    def __init__(
        self,
        hub: "SubscriptionHub",
        collection: str,
        filters: Sequence[FieldFilter],
        listener: Optional[Callable[[List[Document]], None]] = None,
    ) -> None:
        self.collection = collection
        self.filters = tuple(filters)
        self._hub = hub
        self._listener = listener
        self._queue: "queue.Queue[Optional[List[Document]]]" = queue.Queue(maxsize=1)
        self._push_lock = threading.Lock()
        self._latest: Optional[List[Document]] = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def pending(self) -> int:
        """Number of snapshots waiting to be read (never more than one)."""

        return self._queue.qsize()

    def latest(self) -> Optional[List[Document]]:
        """Return the most recent snapshot without waiting."""

        return self._latest

    def deliver(self, snapshot: List[Document]) -> None:
        if not self._active:
            return
        self._latest = snapshot
        self._push(snapshot)
        if self._listener is not None:
            self._listener(snapshot)

    def next_snapshot(self, timeout: Optional[float] = None) -> List[Document]:
        """Block until the next snapshot arrives.

        Raises :class:`TimeoutError` when ``timeout`` elapses and
        :class:`StopIteration` once the subscription has been cancelled.
        """

        try:
            snapshot = self._queue.get(timeout=timeout)
        except queue.Empty as exc:
            raise TimeoutError(f"No snapshot for '{self.collection}' within {timeout}s.") from exc
        if snapshot is None:
            raise StopIteration
        return snapshot

    def drain(self) -> List[List[Document]]:
        """Return the pending snapshot, if any, without blocking."""

        snapshots: List[List[Document]] = []
        while True:
            try:
                snapshot = self._queue.get_nowait()
            except queue.Empty:
                return snapshots
            if snapshot is not None:
                snapshots.append(snapshot)

    def __iter__(self) -> Iterator[List[Document]]:
        return self

    def __next__(self) -> List[Document]:
        return self.next_snapshot()

    def start(self) -> "Subscription":
        if not self._active:
            self._active = True
            self._hub.attach(self)
        return self

    def restart(self) -> "Subscription":
        """Re-attach a cancelled subscription and deliver a fresh snapshot."""

        return self.start()

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._hub.detach(self)
        self._push(None)

    def _push(self, item: Optional[List[Document]]) -> None:
        with self._push_lock:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                pass
            self._queue.put_nowait(item)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.cancel()


class SubscriptionHub:
    """Fan snapshots out to the subscriptions registered on a store."""

    def __init__(self, run_query: Callable[[str, Sequence[FieldFilter]], List[Document]]) -> None:
        self._run_query = run_query
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)

    def attach(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions[subscription.collection].append(subscription)
            subscription.deliver(self._run_query(subscription.collection, subscription.filters))

    def detach(self, subscription: Subscription) -> None:
        with self._lock:
            listeners = self._subscriptions.get(subscription.collection, [])
            if subscription in listeners:
                listeners.remove(subscription)

    def notify(self, collections: Iterable[str]) -> None:
        with self._lock:
            for collection in set(collections):
                for subscription in list(self._subscriptions.get(collection, ())):
                    subscription.deliver(self._run_query(collection, subscription.filters))

    def active_count(self, collection: Optional[str] = None) -> int:
        with self._lock:
            if collection is not None:
                return len(self._subscriptions.get(collection, ()))
            return sum(len(items) for items in self._subscriptions.values())


class DocumentStore(ABC):
    """Contract shared by every document store implementation."""

    max_writes_per_transaction: int = DEFAULT_MAX_WRITES

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return the document or ``None`` when it does not exist."""

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """Return the documents of ``collection`` matching every filter."""

    @abstractmethod
    def transact(self, body: Callable[[Transaction], T]) -> T:
        """Run ``body`` once and commit its writes atomically, or raise on conflict."""

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        listener: Optional[Callable[[List[Document]], None]] = None,
    ) -> Subscription:
        """Return an active subscription that has already received its first snapshot."""

    def require(self, collection: str, doc_id: str) -> Document:
        document = self.get(collection, doc_id)
        if document is None:
            raise NotFoundError(collection, doc_id)
        return document

    def write(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        """Unconditionally replace a single document."""

        def body(txn: Transaction) -> None:
            txn.set(collection, doc_id, data)

        self.transact(body)


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe, process-local store for tests and embedded use."""

    def __init__(self, *, max_writes_per_transaction: int = DEFAULT_MAX_WRITES) -> None:
        if max_writes_per_transaction <= 0:
            raise ValidationError("max_writes_per_transaction must be positive.")
        self.max_writes_per_transaction = max_writes_per_transaction
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, Tuple[Document, int]]] = defaultdict(dict)
        self._clock = 0
        self._hub = SubscriptionHub(self._run_query)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        data, _ = self._read_versioned(collection, doc_id)
        return None if data is None else _with_id(doc_id, data)

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with self._lock:
            documents = [
                _with_id(doc_id, data) for doc_id, (data, _) in self._collections[collection].items()
            ]
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
        with self._lock:
            entry = self._collections[collection].get(doc_id)
            if entry is None:
                return None, 0
            data, version = entry
            return dict(data), version

    def _commit(self, txn: Transaction) -> None:
        writes = txn.writes
        with self._lock:
            for (collection, doc_id), seen in txn.reads.items():
                entry = self._collections[collection].get(doc_id)
                current = entry[1] if entry else 0
                if current != seen:
                    raise TransactionConflictError(
                        f"{collection}/{doc_id} changed during the transaction "
                        f"(version {seen} -> {current})."
                    )
            for (collection, doc_id), data in writes.items():
                if data is None:
                    self._collections[collection].pop(doc_id, None)
                else:
                    self._clock += 1
                    self._collections[collection][doc_id] = (dict(data), self._clock)
            touched = {collection for collection, _ in writes}
        if touched:
            self._hub.notify(touched)


def run_transaction(
    store: DocumentStore,
    body: Callable[[Transaction], T],
    *,
    attempts: int = DEFAULT_TRANSACTION_ATTEMPTS,
    logger: Optional["StructuredLogger"] = None,
) -> T:
    """Run ``body`` in a transaction, retrying snapshot conflicts up to ``attempts`` times."""

    if attempts <= 0:
        raise ValidationError("attempts must be positive")
    last_error: Optional[TransactionConflictError] = None
    for attempt in range(1, attempts + 1):
        try:
            return store.transact(body)
        except TransactionConflictError as exc:
            last_error = exc
            if logger is not None:
                logger.log("transaction_retry", attempt=attempt, error=str(exc))
    raise RetriesExhaustedError(attempts) from last_error


# ---------------------------------------------------------------------------
# Object storage
# ---------------------------------------------------------------------------
def profile_picture_path(user_id: str) -> str:
    return f"profile_pictures/{user_id}.jpg"


def task_proof_path(task_id: str) -> str:
    return f"task_proofs/{task_id}/{uuid4().hex}.jpg"


def reward_image_path(name: str) -> str:
    return f"reward_images/{name}.jpg"


def task_display_image_path(name: str) -> str:
    return f"task_display_images/{name}.jpg"


def _clean_path(path: str) -> str:
    parts = PurePosixPath(path.strip().lstrip("/")).parts
    if not parts or any(part in ("..", ".") for part in parts):
        raise ValidationError(f"Invalid object path: {path!r}")
    return "/".join(parts)


class ObjectStore(ABC):
    """Binary object storage returning a stable retrievable reference."""

    @abstractmethod
    def put(self, path: str, data: bytes) -> str:
        """Store ``data`` at ``path`` and return its URL."""


class InMemoryObjectStore(ObjectStore):
    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}

    def put(self, path: str, data: bytes) -> str:
        key = _clean_path(path)
        self._objects[key] = bytes(data)
        return f"memory://{key}"

    def get(self, path: str) -> bytes:
        return self._objects[_clean_path(path)]

    def paths(self) -> Tuple[str, ...]:
        return tuple(sorted(self._objects))


class LocalObjectStore(ObjectStore):
    """Write objects below ``root`` and serve them from ``base_url``."""

    def __init__(self, root: Path | str, *, base_url: str = "/media") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def put(self, path: str, data: bytes) -> str:
        key = _clean_path(path)
        target = self.root / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"{self.base_url}/{key}"


__all__ = [
    "DEFAULT_MAX_WRITES",
    "DEFAULT_TRANSACTION_ATTEMPTS",
    "DocumentStore",
    "FieldFilter",
    "InMemoryDocumentStore",
    "InMemoryObjectStore",
    "LocalObjectStore",
    "ObjectStore",
    "Subscription",
    "SubscriptionHub",
    "Transaction",
    "apply_query",
    "profile_picture_path",
    "reward_image_path",
    "run_transaction",
    "task_display_image_path",
    "task_proof_path",
    "where",
]
