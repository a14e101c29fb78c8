"""
Models for the Records API
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List
import uuid

from pydantic import ConfigDict
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class RecordKind(str, Enum):
    """Entity kinds that own assets"""

    PUBLICATION = "publication"
    DISPLAY = "display"
    PORTRAIT = "portrait"
    COVER = "cover"


@dataclass(frozen=True)
class KindPolicy:
    """Per-kind storage folder and asset/title constraints"""

    folder: str
    min_assets: int = 1
    max_assets: int | None = None  # None: bounded by the upload batch limit
    title_required: bool = True
    keyed_by_section: bool = False


KIND_POLICIES: dict[RecordKind, KindPolicy] = {
    RecordKind.PUBLICATION: KindPolicy(folder="blog_publications"),
    RecordKind.DISPLAY: KindPolicy(folder="displays"),
    RecordKind.PORTRAIT: KindPolicy(
        folder="portraits", max_assets=1, title_required=False
    ),
    RecordKind.COVER: KindPolicy(
        folder="covers", max_assets=1, title_required=False, keyed_by_section=True
    ),
}


class Record(SQLModel, table=True):
    """An entity and the ordered references to its stored images"""

    __tablename__ = "records"

    id: uuid.UUID | None = Field(default_factory=uuid.uuid4, primary_key=True)
    kind: RecordKind = Field(index=True)
    title: str | None = Field(default=None)
    description: str | None = Field(default=None)
    section: str | None = Field(default=None, max_length=100, index=True)
    asset_refs: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    owner_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    position_index: int = Field(default=0, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(from_attributes=True)


class RecordPublic(SQLModel):
    id: uuid.UUID
    kind: RecordKind
    title: str | None
    description: str | None
    section: str | None
    asset_refs: List[str]
    position_index: int
    created_at: datetime
    updated_at: datetime


class RecordsPublic(SQLModel):
    data: List[RecordPublic]
    total_items: int


class CommitData(SQLModel):
    id: uuid.UUID
    urls: List[str]


class CommitResponse(SQLModel):
    """Structured outcome of a create/update/delete"""

    success: bool
    message: str
    data: CommitData | None = None


class ReorderItem(SQLModel):
    id: uuid.UUID
    position: int

    model_config = ConfigDict(extra="forbid")


class ReorderRequest(SQLModel):
    items: List[ReorderItem]

    model_config = ConfigDict(extra="forbid")


class ReorderFailure(SQLModel):
    id: uuid.UUID
    reason: str


class ReorderResponse(SQLModel):
    """Per-item report; writes are not atomic across items"""

    success: bool
    message: str
    written: List[uuid.UUID] = []
    failed: List[ReorderFailure] = []
