"""
Persistence of drag-and-drop reorders.

A reorder is a batch of independent single-row writes. There is no
cross-item atomicity: a failure is reported for its item and rows already
written stay written. Resubmitting the same ordering writes the same
values again.
"""

from dataclasses import dataclass, field
import uuid

from api.records.models import RecordKind
from api.records.store import RecordNotFoundError, RecordStore, RecordStoreError
from core.exceptions import ValidationError
from core.logger import logger


@dataclass
class BatchOutcome:
    written: list[tuple[uuid.UUID, int]] = field(default_factory=list)
    failed: list[tuple[uuid.UUID, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.written) and bool(self.failed)


def assign_positions(pairs: list[tuple[uuid.UUID, int]]) -> list[tuple[uuid.UUID, int]]:
    """
    Turn (id, desired position) pairs into consecutive positions 1..N.

    Ties keep the order they were submitted in.

    Raises:
        ValidationError: if an id appears more than once
    """
    ids = [record_id for record_id, _ in pairs]
    if len(set(ids)) != len(ids):
        raise ValidationError("Each record may appear only once in a reorder")

    ordered = sorted(pairs, key=lambda pair: pair[1])
    return [(record_id, index) for index, (record_id, _) in enumerate(ordered, start=1)]


class OrderPersistence:

    def __init__(self, records: RecordStore):
        self.records = records

    def _write(
        self,
        record_id: uuid.UUID,
        position: int,
        kind: RecordKind | None,
        owner_id: uuid.UUID | None,
    ) -> None:
        record = self.records.get(record_id)
        if kind is not None and record.kind != kind:
            raise LookupError(f"record is not a {kind.value}")
        if owner_id is not None and record.owner_id != owner_id:
            raise PermissionError("not the owner of this record")
        # Reorders do not bump updated_at
        self.records.update(record_id, {"position_index": position}, touch=False)

    def apply(
        self,
        pairs: list[tuple[uuid.UUID, int]],
        kind: RecordKind | None = None,
        owner_id: uuid.UUID | None = None,
    ) -> BatchOutcome:
        """
        Write the positions for a reorder.

        Args:
            pairs: (record id, desired position) in any order
            kind: Only records of this kind may be moved
            owner_id: Only records owned by this user may be moved

        Returns:
            BatchOutcome listing written and failed items

        Raises:
            ValidationError: for duplicate ids (nothing is written)
        """
        outcome = BatchOutcome()
        for record_id, position in assign_positions(pairs):
            try:
                self._write(record_id, position, kind, owner_id)
            except RecordNotFoundError:
                outcome.failed.append((record_id, "record not found"))
            except RecordStoreError as exc:
                outcome.failed.append((record_id, str(exc)))
            except (LookupError, PermissionError) as exc:
                outcome.failed.append((record_id, str(exc)))
            else:
                outcome.written.append((record_id, position))

        if outcome.failed:
            logger.warning(
                "Reorder partially applied: %d written, %d failed",
                len(outcome.written),
                len(outcome.failed),
            )
        else:
            logger.info("Reorder applied to %d record(s)", len(outcome.written))
        return outcome
