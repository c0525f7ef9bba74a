"""Access to the database projection of the record store."""
import logging
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from civic_index.exceptions import ErrorCode, StorageError
from civic_index.models.db_models import DBRecord, get_session_factory, init_db
from civic_index.models.schema import (
    Author,
    RecordEntity,
    RecordMetadata,
    ensure_timezone_aware,
    to_utc,
)

logger = logging.getLogger(__name__)


def _naive_utc(value):
    # SQLite DateTime columns carry no zone; values are stored as UTC
    return to_utc(value).replace(tzinfo=None)


class RecordRepository:
    """Reads and writes DBRecord rows.

    Every write runs in its own session and is committed on its own, so one
    failing record never rolls back another.
    """

    def __init__(self, engine: Optional[Engine] = None, session_factory=None):
        self.engine = engine if engine is not None else init_db()
        self.session_factory = session_factory or get_session_factory(self.engine)

    def get(self, record_id: str) -> Optional[RecordEntity]:
        """Return the stored record (including ``workflow_state``), or None.

        Raises:
            StorageError: If the row cannot be read or no longer forms a valid
                record.
        """
        try:
            with self.session_factory() as session:
                db_record = session.get(DBRecord, record_id)
                if db_record is None:
                    return None
                return self._db_record_to_model(db_record)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read record {record_id}",
                operation="get",
                record_id=record_id,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e
        except ValidationError as e:
            raise StorageError(
                f"Stored record {record_id} is invalid",
                operation="get",
                record_id=record_id,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def create(self, record: RecordEntity, path: Optional[str] = None) -> None:
        """Insert a new row for ``record``.

        Raises:
            StorageError: If the insert fails (e.g. the id already exists).
        """
        try:
            with self.session_factory() as session:
                db_record = DBRecord(id=record.id, workflow_state=record.workflow_state)
                self._apply(db_record, record, path)
                session.add(db_record)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to create record {record.id}",
                operation="create",
                record_id=record.id,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        logger.debug(f"Created database record {record.id}")

    def update(self, record: RecordEntity, path: Optional[str] = None) -> None:
        """Overwrite the file-backed columns of an existing row.

        Database-only columns (``workflow_state``) keep their stored value.

        Raises:
            StorageError: If the row is missing or the update fails.
        """
        try:
            with self.session_factory() as session:
                db_record = session.get(DBRecord, record.id)
                if db_record is None:
                    raise StorageError(
                        f"Record {record.id} not found in database",
                        operation="update",
                        record_id=record.id,
                        code=ErrorCode.STORAGE_WRITE_FAILED,
                    )
                self._apply(db_record, record, path)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to update record {record.id}",
                operation="update",
                record_id=record.id,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        logger.debug(f"Updated database record {record.id}")

    def set_workflow_state(self, record_id: str, state: Optional[str]) -> None:
        """Set the database-only workflow state of an existing row."""
        try:
            with self.session_factory() as session:
                db_record = session.get(DBRecord, record_id)
                if db_record is None:
                    raise StorageError(
                        f"Record {record_id} not found in database",
                        operation="set_workflow_state",
                        record_id=record_id,
                        code=ErrorCode.STORAGE_WRITE_FAILED,
                    )
                db_record.workflow_state = state
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to set workflow state of {record_id}",
                operation="set_workflow_state",
                record_id=record_id,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def count(self) -> int:
        try:
            with self.session_factory() as session:
                return session.scalar(select(func.count()).select_from(DBRecord)) or 0
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to count records", operation="count", original_error=e
            ) from e

    def list_ids(self) -> List[str]:
        """All stored record ids, sorted."""
        try:
            with self.session_factory() as session:
                return list(session.scalars(select(DBRecord.id).order_by(DBRecord.id)))
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to list records", operation="list_ids", original_error=e
            ) from e

    @staticmethod
    def _apply(db_record: DBRecord, record: RecordEntity, path: Optional[str]) -> None:
        """Copy the file-backed fields of ``record`` onto ``db_record``."""
        db_record.title = record.title
        db_record.type = record.type
        db_record.status = record.status
        db_record.content = record.content
        db_record.author = record.author
        db_record.authors = [
            a.model_dump(mode="json", exclude_none=True) for a in record.authors
        ]
        db_record.metadata_ = record.metadata.model_dump(mode="json")
        db_record.created_at = _naive_utc(record.created_at)
        db_record.updated_at = _naive_utc(record.updated_at)
        if path is not None:
            db_record.path = path

    @staticmethod
    def _db_record_to_model(db_record: DBRecord) -> RecordEntity:
        """Convert a DBRecord row to a RecordEntity without file I/O."""
        return RecordEntity(
            id=db_record.id,
            title=db_record.title,
            type=db_record.type,
            status=db_record.status,
            content=db_record.content or "",
            author=db_record.author,
            authors=[Author(**a) for a in (db_record.authors or [])],
            created_at=ensure_timezone_aware(db_record.created_at),
            updated_at=ensure_timezone_aware(db_record.updated_at),
            metadata=RecordMetadata(**(db_record.metadata_ or {})),
            workflow_state=db_record.workflow_state,
        )
