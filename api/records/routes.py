"""
Routes/endpoints for the Records API

HTTP    URI                               Action
----    ---                               ------
GET     /api/v1/records/[kind]            List records of a kind in display order
POST    /api/v1/records/[kind]            Create (no id) or update (id) a record
PUT     /api/v1/records/[kind]/order      Persist a drag-and-drop reorder
GET     /api/v1/records/[kind]/[id]       Retrieve a single record
DELETE  /api/v1/records/[kind]/[id]       Delete a record and its images
"""

from typing import Annotated
import uuid

from fastapi import APIRouter, File, Form, Response, UploadFile, status

from api.auth.deps import OptionalUser
from api.records import services
from api.records.deps import CommitCoordinatorDep, OrderPersistenceDep, RecordStoreDep
from api.records.models import (
    CommitResponse,
    RecordKind,
    RecordPublic,
    RecordsPublic,
    ReorderRequest,
    ReorderResponse,
)

router = APIRouter(prefix="/records", tags=["Record Endpoints"])

###############################################################################
# Records Endpoints /api/v1/records/{kind}
###############################################################################


@router.get(
    "/{kind}",
    response_model=RecordsPublic,
    status_code=status.HTTP_200_OK,
)
def get_records(records: RecordStoreDep, kind: RecordKind) -> RecordsPublic:
    """
    Returns every record of a kind ordered by position.
    """
    return services.get_records(records, kind)


@router.post(
    "/{kind}",
    response_model=CommitResponse,
)
def commit_record(
    response: Response,
    coordinator: CommitCoordinatorDep,
    principal: OptionalUser,
    kind: RecordKind,
    record_id: Annotated[str | None, Form(alias="id")] = None,
    title: Annotated[str | None, Form()] = None,
    description: Annotated[str | None, Form()] = None,
    section: Annotated[str | None, Form()] = None,
    existing_refs: Annotated[str | None, Form(alias="existingRefs")] = None,
    images: Annotated[list[UploadFile] | None, File()] = None,
) -> CommitResponse:
    """
    Create a record, or update it when an id is given.

    New images are uploaded first; the record is written only when every
    upload succeeded. existingRefs lists the current images to keep, in
    order; images the record had that are not listed are deleted after
    the write.
    """
    result = services.commit_record(
        coordinator,
        principal,
        kind=kind,
        record_id=record_id,
        title=title,
        description=description,
        section=section,
        existing_refs=existing_refs,
        images=images,
    )
    response.status_code = services.commit_status(result)
    return services.to_commit_response(result)

###############################################################################
# Order Endpoint /api/v1/records/{kind}/order
###############################################################################


@router.put(
    "/{kind}/order",
    response_model=ReorderResponse,
)
def reorder_records(
    response: Response,
    order: OrderPersistenceDep,
    principal: OptionalUser,
    kind: RecordKind,
    reorder_in: ReorderRequest,
) -> ReorderResponse:
    """
    Assign positions 1..N following the submitted ordering.

    Each record is written on its own: a failed item does not undo the
    items already written, and is listed under "failed".
    """
    result, status_code = services.reorder_records(order, kind, reorder_in, principal)
    response.status_code = status_code
    return result

###############################################################################
# Record Endpoints /api/v1/records/{kind}/{record_id}
###############################################################################


@router.get(
    "/{kind}/{record_id}",
    response_model=RecordPublic,
)
def get_record(records: RecordStoreDep, kind: RecordKind, record_id: uuid.UUID) -> RecordPublic:
    """
    Returns a single record by id.
    """
    return services.get_record(records, kind, record_id)


@router.delete(
    "/{kind}/{record_id}",
    response_model=CommitResponse,
)
def delete_record(
    response: Response,
    coordinator: CommitCoordinatorDep,
    principal: OptionalUser,
    kind: RecordKind,
    record_id: uuid.UUID,
) -> CommitResponse:
    """
    Delete a record, then the stored images it referenced.
    """
    result = coordinator.delete(kind, record_id, principal)
    response.status_code = services.commit_status(result)
    return services.to_commit_response(result)
