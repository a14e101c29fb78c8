"""
Services for the Records API
"""
import json
import uuid

from fastapi import HTTPException, UploadFile, status

from api.assets.models import Existing, Pending, PendingFile, UploadItem
from api.auth.models import User
from api.records.commit import CommitCoordinator, CommitRequest, CommitResult
from api.records.models import (
    CommitData,
    CommitResponse,
    Record,
    RecordKind,
    RecordPublic,
    RecordsPublic,
    ReorderFailure,
    ReorderRequest,
    ReorderResponse,
)
from api.records.ordering import OrderPersistence
from api.records.store import RecordNotFoundError, RecordStore
from core.exceptions import AuthError, CommitError, ValidationError


def parse_existing_refs(raw: str | None) -> list[str]:
    """
    Parse the client's JSON array of retained references.

    Raises:
        ValidationError: if raw is not a JSON array of strings
    """
    if raw is None or not raw.strip():
        return []
    try:
        refs = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError("Invalid existing images data") from exc
    if not isinstance(refs, list) or not all(isinstance(ref, str) for ref in refs):
        raise ValidationError("Invalid existing images data")
    return refs


def parse_record_id(raw: str | None) -> uuid.UUID | None:
    if raw is None or not raw.strip():
        return None
    try:
        return uuid.UUID(raw.strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid record id: {raw}") from exc


def read_uploads(
    images: list[UploadFile] | None, max_file_size: int | None = None
) -> list[PendingFile]:
    """
    Read multipart file parts into memory.
    Empty parts (a file input left blank) are ignored.

    Args:
        images: Uploaded parts
        max_file_size: Read at most one byte past this per part, enough for
            size validation to reject it
    """
    files = []
    for image in images or []:
        data = image.file.read(-1 if max_file_size is None else max_file_size + 1)
        if not data:
            continue
        files.append(
            PendingFile(
                filename=image.filename or "unnamed",
                content_type=image.content_type,
                data=data,
            )
        )
    return files


def build_commit_request(
    kind: RecordKind,
    record_id: str | None,
    title: str | None,
    description: str | None,
    section: str | None,
    existing_refs: str | None,
    images: list[UploadFile] | None,
    max_file_size: int | None = None,
) -> CommitRequest:
    """Turn the inbound multipart fields into a typed commit request"""
    items: list[UploadItem] = [Existing(ref) for ref in parse_existing_refs(existing_refs)]
    items += [Pending(file) for file in read_uploads(images, max_file_size)]
    return CommitRequest(
        kind=kind,
        title=title,
        record_id=parse_record_id(record_id),
        description=description,
        section=section,
        items=items,
    )


def commit_record(
    coordinator: CommitCoordinator,
    principal: User | None,
    **fields,
) -> CommitResult:
    try:
        request = build_commit_request(
            **fields, max_file_size=coordinator.uploader.limits.max_file_size
        )
    except CommitError as exc:
        return CommitResult(success=False, message=exc.message, error=exc)
    return coordinator.commit(request, principal)


def commit_status(result: CommitResult) -> int:
    if result.error is not None:
        return result.error.status_code
    if result.created:
        return status.HTTP_201_CREATED
    return status.HTTP_200_OK


def to_commit_response(result: CommitResult) -> CommitResponse:
    data = None
    if result.success and result.record_id is not None:
        data = CommitData(id=result.record_id, urls=result.urls)
    return CommitResponse(success=result.success, message=result.message, data=data)


def get_records(records: RecordStore, kind: RecordKind) -> RecordsPublic:
    """
    Returns all records of a kind in display order.
    """
    data = [
        RecordPublic.model_validate(record, from_attributes=True)
        for record in records.list(kind=kind)
    ]
    return RecordsPublic(data=data, total_items=len(data))


def get_record(records: RecordStore, kind: RecordKind, record_id: uuid.UUID) -> Record:
    """
    Returns a single record, 404 if it does not exist or is another kind.
    """
    try:
        record = records.get(record_id)
    except RecordNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{kind.value.capitalize()} {record_id} not found."
        ) from exc

    if record.kind != kind:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{kind.value.capitalize()} {record_id} not found."
        )
    return record


def reorder_records(
    order: OrderPersistence,
    kind: RecordKind,
    reorder_in: ReorderRequest,
    principal: User | None,
) -> tuple[ReorderResponse, int]:
    """
    Apply a reorder and report per-item results with the HTTP status to use.
    """
    try:
        if principal is None:
            raise AuthError("Not authenticated. Please sign in.", authenticated=False)
        outcome = order.apply(
            [(item.id, item.position) for item in reorder_in.items],
            kind=kind,
            owner_id=principal.id,
        )
    except CommitError as exc:
        return ReorderResponse(success=False, message=exc.message), exc.status_code

    failed = [ReorderFailure(id=record_id, reason=reason) for record_id, reason in outcome.failed]
    written = [record_id for record_id, _ in outcome.written]
    if outcome.success:
        message = f"Updated order of {len(written)} {kind.value}(s)"
        status_code = status.HTTP_200_OK
    else:
        message = f"Failed to update order of {len(failed)} {kind.value}(s)"
        status_code = status.HTTP_207_MULTI_STATUS if written else status.HTTP_400_BAD_REQUEST

    return (
        ReorderResponse(
            success=outcome.success,
            message=message,
            written=written,
            failed=failed,
        ),
        status_code,
    )
