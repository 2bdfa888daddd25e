"""Document store client and best-effort auxiliary writes.

The document store is a second, independently owned database: there is no
transaction spanning it and the relational store. Primary effects (request
status, balances, stock) are committed relationally first; document writes
(finance transactions, daily tasks, employee mirrors) follow and are:

  * idempotent: every write targets a deterministic doc_id and upserts,
    so replaying it after a crash cannot duplicate the document;
  * non-fatal: a failed write is logged and parked in ``document_outbox``
    for the Celery replay task instead of failing the caller.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Protocol

from sqlalchemy import JSON, DateTime, String, UniqueConstraint, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from app.core.config import settings
from app.db.base import utcnow
from app.models.audit import DocumentOutbox

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def create(self, collection: str, data: dict, doc_id: str | None = None) -> str: ...

    def get(self, collection: str, doc_id: str) -> dict | None: ...

    def query(self, collection: str, **filters: Any) -> list[dict]: ...

    def update(self, collection: str, doc_id: str, partial: dict) -> None: ...

    def upsert(self, collection: str, doc_id: str, data: dict) -> None: ...


# ─── SQL-backed implementation ───

class DocumentBase(DeclarativeBase):
    pass


class Document(DocumentBase):
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    doc_id: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


def _jsonable(data: dict) -> dict:
    return json.loads(json.dumps(data, default=str))


class SqlDocumentStore:
    """Collections of JSON documents in a separately configured database.

    Each call runs in its own short transaction against the document
    engine, never in the caller's relational session.
    """

    def __init__(self, engine: Engine | None = None):
        self.engine = engine or create_engine(settings.document_store_url, pool_pre_ping=True)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

    def ensure_schema(self) -> None:
        DocumentBase.metadata.create_all(self.engine)

    def _find(self, session: Session, collection: str, doc_id: str) -> Document | None:
        return session.execute(
            select(Document).where(Document.collection == collection, Document.doc_id == doc_id)
        ).scalars().first()

    def create(self, collection: str, data: dict, doc_id: str | None = None) -> str:
        """Insert a document; an existing doc_id is left untouched (replay-safe)."""
        doc_id = doc_id or uuid.uuid4().hex
        with self._sessions() as session:
            if self._find(session, collection, doc_id) is None:
                session.add(Document(collection=collection, doc_id=doc_id, data=_jsonable(data)))
                session.commit()
        return doc_id

    def get(self, collection: str, doc_id: str) -> dict | None:
        with self._sessions() as session:
            doc = self._find(session, collection, doc_id)
            return dict(doc.data) if doc else None

    def query(self, collection: str, **filters: Any) -> list[dict]:
        with self._sessions() as session:
            docs = session.execute(
                select(Document).where(Document.collection == collection).order_by(Document.id)
            ).scalars().all()
        results = []
        for doc in docs:
            if all(doc.data.get(k) == v for k, v in filters.items()):
                results.append({"id": doc.doc_id, **doc.data})
        return results

    def update(self, collection: str, doc_id: str, partial: dict) -> None:
        with self._sessions() as session:
            doc = self._find(session, collection, doc_id)
            if doc is None:
                raise KeyError(f"{collection}/{doc_id} does not exist")
            doc.data = {**doc.data, **_jsonable(partial)}
            session.commit()

    def upsert(self, collection: str, doc_id: str, data: dict) -> None:
        with self._sessions() as session:
            doc = self._find(session, collection, doc_id)
            if doc is None:
                session.add(Document(collection=collection, doc_id=doc_id, data=_jsonable(data)))
            else:
                doc.data = {**doc.data, **_jsonable(data)}
            session.commit()


@lru_cache
def get_document_store() -> DocumentStore:
    return SqlDocumentStore()


# ─── Best-effort auxiliary writes ───

def write_auxiliary(
    db: Session,
    documents: DocumentStore,
    collection: str,
    doc_id: str,
    data: dict,
) -> bool:
    """Upsert an auxiliary document after the primary write has committed.

    Returns True when delivered. On failure the write is logged and parked
    in ``document_outbox`` for replay; the primary effect is never undone.
    """
    try:
        documents.upsert(collection, doc_id, data)
        return True
    except Exception as exc:
        logger.warning(
            "Document write %s/%s failed, queued for replay: %s", collection, doc_id, exc
        )
        try:
            db.add(DocumentOutbox(
                collection=collection,
                doc_id=doc_id,
                payload=json.dumps(data, default=str),
                last_error=str(exc)[:2000],
            ))
            db.commit()
        except Exception:
            db.rollback()
            logger.error(
                "Could not queue document write %s/%s for replay", collection, doc_id, exc_info=True
            )
        return False


def flush_outbox(db: Session, documents: DocumentStore, limit: int = 100) -> dict:
    """Replay parked document writes. Safe to run concurrently with new writes."""
    stats = {"delivered": 0, "failed": 0}
    pending = db.execute(
        select(DocumentOutbox)
        .where(DocumentOutbox.delivered_at.is_(None))
        .order_by(DocumentOutbox.created_at)
        .limit(limit)
    ).scalars().all()

    for item in pending:
        try:
            documents.upsert(item.collection, item.doc_id, json.loads(item.payload))
        except Exception as exc:
            item.attempts += 1
            item.last_error = str(exc)[:2000]
            stats["failed"] += 1
            logger.warning(
                "Replay of %s/%s failed (attempt %d): %s",
                item.collection, item.doc_id, item.attempts, exc,
            )
            continue
        item.delivered_at = datetime.now(timezone.utc)
        stats["delivered"] += 1

    db.commit()
    return stats
