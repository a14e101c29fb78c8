"""
RecordStore adapter over the SQLModel session.

All record mutations go through insert/update/delete here. Each call is
its own transaction; SQLAlchemy failures are rolled back and translated
into RecordStoreError subclasses.
"""

from datetime import datetime, timezone
from typing import Any
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, func, select

from api.records.models import Record, RecordKind
from core.logger import logger

SORTABLE_FIELDS = {"position_index", "created_at", "updated_at", "title"}


class RecordStoreError(Exception):
    pass


class RecordNotFoundError(RecordStoreError):
    pass


class RecordConflict(RecordStoreError):
    pass


class RecordStoreUnavailable(RecordStoreError):
    pass


class RecordStore:

    def __init__(self, session: Session):
        self.session = session

    def _fail(self, action: str, exc: SQLAlchemyError) -> RecordStoreError:
        self.session.rollback()
        logger.error("Record %s failed: %s", action, exc)
        if isinstance(exc, IntegrityError):
            return RecordConflict(f"Record {action} conflicts with existing data")
        return RecordStoreUnavailable(f"Record {action} failed: database unavailable")

    def _reload(self, record: Record) -> None:
        # Already committed; a failed reload is only logged
        try:
            self.session.refresh(record)
        except SQLAlchemyError as exc:
            logger.warning("Reloading committed record failed: %s", exc)

    def get(self, record_id: uuid.UUID) -> Record:
        """
        Raises:
            RecordNotFoundError, RecordStoreUnavailable
        """
        try:
            record = self.session.get(Record, record_id)
        except SQLAlchemyError as exc:
            raise self._fail("lookup", exc) from exc
        if record is None:
            raise RecordNotFoundError(f"Record {record_id} not found")
        return record

    def find_by_section(self, kind: RecordKind, section: str) -> Record | None:
        try:
            return self.session.exec(
                select(Record)
                .where(Record.kind == kind)
                .where(Record.section == section)
            ).first()
        except SQLAlchemyError as exc:
            raise self._fail("lookup", exc) from exc

    def next_position(self, kind: RecordKind) -> int:
        """Position that appends a new record after every existing one of its kind"""
        try:
            highest = self.session.exec(
                select(func.max(Record.position_index)).where(Record.kind == kind)
            ).one()
        except SQLAlchemyError as exc:
            raise self._fail("lookup", exc) from exc
        return (highest or 0) + 1

    def insert(self, record: Record) -> uuid.UUID:
        """
        Insert a record and commit. Only a failed commit raises; once the
        row is committed the returned id is authoritative.
        """
        record_id, kind = record.id, record.kind
        try:
            self.session.add(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("insert", exc) from exc
        self._reload(record)
        logger.info("Inserted %s record %s", kind.value, record_id)
        return record_id

    def update(
        self, record_id: uuid.UUID, patch: dict[str, Any], touch: bool = True
    ) -> Record:
        """
        Apply patch to a record and commit.

        Args:
            record_id: Record to update
            patch: Column values to set
            touch: Also bump updated_at

        Raises:
            RecordNotFoundError, RecordConflict, RecordStoreUnavailable: the
            commit did not happen
        """
        record = self.get(record_id)
        try:
            for key, value in patch.items():
                setattr(record, key, value)
            if touch:
                record.updated_at = datetime.now(timezone.utc)
            self.session.add(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("update", exc) from exc
        self._reload(record)
        return record

    def delete(self, record_id: uuid.UUID) -> None:
        record = self.get(record_id)
        try:
            self.session.delete(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("delete", exc) from exc
        logger.info("Deleted record %s", record_id)

    def list(
        self,
        kind: RecordKind | None = None,
        owner_id: uuid.UUID | None = None,
        order_by: str = "position_index",
    ) -> list[Record]:
        statement = select(Record)
        if kind is not None:
            statement = statement.where(Record.kind == kind)
        if owner_id is not None:
            statement = statement.where(Record.owner_id == owner_id)

        sort_field = getattr(Record, order_by if order_by in SORTABLE_FIELDS else "position_index")
        statement = statement.order_by(sort_field.asc(), Record.created_at.asc())
        try:
            return list(self.session.exec(statement).all())
        except SQLAlchemyError as exc:
            raise self._fail("listing", exc) from exc
