"""Document store abstraction: keyed JSON documents with live subscriptions.

Every collection the site uses (sessions, shared_links, config, vault) is a
flat namespace of documents addressed by (collection, doc_id). Writers use
get/set/update/delete; readers that need to react to remote changes
subscribe to a single document and receive its latest full snapshot after
every write (None once it is deleted). Snapshots are never deltas.

Delivery is in-process and in write order per document. A listener that
raises is logged and skipped; it never fails the writer.
"""

import copy
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Awaitable, Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from codeprism.models.base import Base
from codeprism.models.document import Document

logger = logging.getLogger("codeprism.store")

Snapshot = dict | None
Listener = Callable[[Snapshot], Awaitable[None]]


class DocumentStoreError(Exception):
    """The backing database could not complete a request."""


class DocumentNotFoundError(DocumentStoreError):
    """update() was called on a document that does not exist."""


class Subscription:
    """Handle for one live listener on one document."""

    def __init__(self, store: "DocumentStore", collection: str, doc_id: str, listener: Listener):
        self._store = store
        self.collection = collection
        self.doc_id = doc_id
        self.listener = listener
        self.active = True

    async def start(self) -> None:
        """Deliver the document's current state, as a first event."""
        snapshot = await self._store.get(self.collection, self.doc_id)
        await self._store._deliver(self, snapshot)

    def unsubscribe(self) -> None:
        """Stop delivery. Safe to call more than once, and from inside the listener."""
        if not self.active:
            return
        self.active = False
        self._store._discard(self)


class DocumentStore(ABC):
    """Base store: subclasses provide raw persistence, this class fans out changes."""

    def __init__(self) -> None:
        self._subscribers: dict[tuple[str, str], list[Subscription]] = defaultdict(list)

    # --- persistence primitives ---

    @abstractmethod
    async def _read(self, collection: str, doc_id: str) -> Snapshot:
        ...

    @abstractmethod
    async def _write(self, collection: str, doc_id: str, data: dict) -> None:
        ...

    @abstractmethod
    async def _erase(self, collection: str, doc_id: str) -> bool:
        """Remove a document. Returns whether it existed."""
        ...

    @abstractmethod
    async def _scan(self, collection: str) -> list[tuple[str, dict]]:
        ...

    # --- public API ---

    async def get(self, collection: str, doc_id: str) -> Snapshot:
        data = await self._read(collection, doc_id)
        return copy.deepcopy(data)

    async def set(self, collection: str, doc_id: str, data: dict, *, merge: bool = False) -> None:
        """Replace a document, or shallow-merge into it when merge=True."""
        payload = copy.deepcopy(data)
        if merge:
            current = await self._read(collection, doc_id) or {}
            payload = {**current, **payload}
        await self._write(collection, doc_id, payload)
        await self._notify(collection, doc_id)

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        """Shallow-merge fields into an existing document."""
        current = await self._read(collection, doc_id)
        if current is None:
            raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist")
        await self._write(collection, doc_id, {**current, **copy.deepcopy(fields)})
        await self._notify(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. No-op if it does not exist."""
        if await self._erase(collection, doc_id):
            await self._notify(collection, doc_id)

    async def list_documents(self, collection: str) -> list[tuple[str, dict]]:
        return copy.deepcopy(await self._scan(collection))

    def subscribe(self, collection: str, doc_id: str, listener: Listener) -> Subscription:
        """Register a listener. Call ``await subscription.start()`` for the initial snapshot."""
        sub = Subscription(self, collection, doc_id, listener)
        self._subscribers[(collection, doc_id)].append(sub)
        return sub

    def subscriber_count(self, collection: str, doc_id: str) -> int:
        return len(self._subscribers.get((collection, doc_id), []))

    # --- fan-out ---

    def _discard(self, sub: Subscription) -> None:
        key = (sub.collection, sub.doc_id)
        subs = self._subscribers.get(key)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._subscribers[key]

    async def _notify(self, collection: str, doc_id: str) -> None:
        subs = list(self._subscribers.get((collection, doc_id), []))
        if not subs:
            return
        snapshot = await self._read(collection, doc_id)
        for sub in subs:
            await self._deliver(sub, snapshot)

    async def _deliver(self, sub: Subscription, snapshot: Snapshot) -> None:
        if not sub.active:
            return
        try:
            await sub.listener(copy.deepcopy(snapshot))
        except Exception:
            logger.exception(
                "listener failed collection=%s doc_id=%s", sub.collection, sub.doc_id
            )


class InMemoryDocumentStore(DocumentStore):
    """In-memory store for testing and single-process development."""

    def __init__(self) -> None:
        super().__init__()
        self._docs: dict[str, dict[str, dict]] = defaultdict(dict)

    async def _read(self, collection: str, doc_id: str) -> Snapshot:
        return self._docs[collection].get(doc_id)

    async def _write(self, collection: str, doc_id: str, data: dict) -> None:
        self._docs[collection][doc_id] = data

    async def _erase(self, collection: str, doc_id: str) -> bool:
        return self._docs[collection].pop(doc_id, None) is not None

    async def _scan(self, collection: str) -> list[tuple[str, dict]]:
        return sorted(self._docs[collection].items())


class SqlDocumentStore(DocumentStore):
    """SQLAlchemy-backed store: one ``documents`` row per document.

    Change notifications are fanned out inside this process only.
    """

    def __init__(self, database_url: str):
        super().__init__()
        self._engine = create_async_engine(database_url)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    async def _read(self, collection: str, doc_id: str) -> Snapshot:
        try:
            async with self._session_factory() as db:
                doc = await db.get(Document, {"collection": collection, "doc_id": doc_id})
                return dict(doc.data) if doc is not None else None
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"read failed for {collection}/{doc_id}") from exc

    async def _write(self, collection: str, doc_id: str, data: dict) -> None:
        try:
            async with self._session_factory.begin() as db:
                doc = await db.get(Document, {"collection": collection, "doc_id": doc_id})
                if doc is None:
                    db.add(Document(collection=collection, doc_id=doc_id, data=data))
                else:
                    doc.data = data
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"write failed for {collection}/{doc_id}") from exc

    async def _erase(self, collection: str, doc_id: str) -> bool:
        try:
            async with self._session_factory.begin() as db:
                result = await db.execute(
                    delete(Document).where(
                        Document.collection == collection,
                        Document.doc_id == doc_id,
                    )
                )
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"delete failed for {collection}/{doc_id}") from exc

    async def _scan(self, collection: str) -> list[tuple[str, dict]]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Document)
                    .where(Document.collection == collection)
                    .order_by(Document.doc_id)
                )
                return [(doc.doc_id, dict(doc.data)) for doc in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"scan failed for {collection}") from exc


# Module-level singleton, replaceable in tests
_store: DocumentStore | None = None


def get_document_store() -> DocumentStore:
    """Get the current document store, creating it from settings on first use."""
    global _store
    if _store is None:
        from codeprism.config import settings

        if settings.document_store == "memory":
            _store = InMemoryDocumentStore()
        else:
            _store = SqlDocumentStore(settings.database_url)
    return _store


def set_document_store(store: DocumentStore | None) -> None:
    """Set the document store (used for testing)."""
    global _store
    _store = store
