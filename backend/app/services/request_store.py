"""Request Store Adapter — create / read / update against the relational store.

Every table touched by the workflow core carries a ``version_id`` column
mapped as SQLAlchemy's ``version_id_col``: each UPDATE is issued as
``... WHERE id = :id AND version_id = :seen`` and a lost race surfaces as
``StaleDataError`` at flush time. ``run_with_retry`` turns that into a
bounded re-read-and-retry loop.
"""
import logging
import time
import uuid
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.exceptions import (
    ConcurrentModificationError,
    RecordNotFoundError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
ModelT = TypeVar("ModelT")


# ─── Bounded retry ───

def run_with_retry(
    db: Session,
    operation: Callable[[], T],
    entity: str = "record",
    attempts: int | None = None,
    backoff: float | None = None,
) -> T:
    """Run ``operation`` (read fresh → evaluate → write → commit) with retries.

    Optimistic-concurrency conflicts and transient store errors roll the
    session back and re-run the whole operation against fresh state, up to
    ``attempts`` times. Business-rule errors propagate immediately.

    Raises:
        ConcurrentModificationError: conflicts on every attempt.
        StoreUnavailableError: the store kept failing with OperationalError.
    """
    attempts = attempts or settings.OPTIMISTIC_RETRY_ATTEMPTS
    backoff = settings.RETRY_BACKOFF_BASE_SECONDS if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except (StaleDataError, ConcurrentModificationError) as exc:
            db.rollback()
            logger.info(
                "Concurrent modification on %s (attempt %d/%d): %s",
                entity, attempt, attempts, exc,
            )
            if attempt == attempts:
                raise ConcurrentModificationError(entity) from exc
        except OperationalError as exc:
            db.rollback()
            logger.warning(
                "Transient store error on %s (attempt %d/%d): %s",
                entity, attempt, attempts, exc,
            )
            if attempt == attempts:
                raise StoreUnavailableError(
                    f"The record store is unavailable while updating {entity}; please retry."
                ) from exc
        except Exception:
            db.rollback()
            raise
        if backoff:
            time.sleep(backoff * (2 ** (attempt - 1)))

    raise ConcurrentModificationError(entity)  # pragma: no cover


# ─── Adapter ───

class RequestStore(Generic[ModelT]):
    """Thin pass-through over one versioned table.

    ``update`` is last-write-wins on the fields it is given, so callers pass
    the complete intended set of stage fields, plus the version they read.
    """

    def __init__(self, db: Session, model: type[ModelT]):
        self.db = db
        self.model = model
        self.entity = model.__tablename__

    def create(self, record: ModelT) -> ModelT:
        self.db.add(record)
        self.db.flush()
        return record

    def get_by_id(self, record_id: uuid.UUID, fresh: bool = True) -> ModelT:
        """Load one record; ``fresh`` bypasses the identity map and re-reads the row."""
        stmt = select(self.model).where(self.model.id == record_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        record = self.db.execute(stmt).scalars().first()
        if record is None:
            raise RecordNotFoundError(self.entity, record_id)
        return record

    def list_by_filter(
        self,
        *criteria: Any,
        order_by: Any = None,
        limit: int | None = None,
        **filters: Any,
    ) -> list[ModelT]:
        stmt = select(self.model)
        for name, value in filters.items():
            stmt = stmt.where(getattr(self.model, name) == value)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = stmt.order_by(order_by if order_by is not None else self.model.created_at)
        if limit:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def update(
        self,
        record_id: uuid.UUID,
        partial: dict[str, Any],
        expected_version: int | None = None,
    ) -> ModelT:
        """Apply ``partial`` to the record and flush.

        With ``expected_version`` the write only goes through if nobody has
        written the row since that version was read.

        Raises:
            ConcurrentModificationError: the row moved past ``expected_version``.
            StaleDataError: the row changed between this read and the flush.
        """
        record = self.get_by_id(record_id)
        if expected_version is not None and record.version_id != expected_version:
            raise ConcurrentModificationError(self.entity)
        for name, value in partial.items():
            setattr(record, name, value)
        self.db.flush()
        return record
