"""
Models for asset uploads
"""

from dataclasses import dataclass, field
from typing import TypeAlias

# Public url of a stored object. Compared by value.
AssetReference: TypeAlias = str


@dataclass(frozen=True)
class PendingFile:
    """A binary submitted by the client that still has to be uploaded"""

    filename: str
    content_type: str | None
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Existing:
    """Client asks to keep an asset the record already references"""

    reference: AssetReference


@dataclass(frozen=True)
class Pending:
    """Client submits a new binary"""

    file: PendingFile


UploadItem: TypeAlias = Existing | Pending


def split_items(items: list[UploadItem]) -> tuple[list[AssetReference], list[PendingFile]]:
    """Separate retained references from pending files, keeping relative order"""
    retained = [item.reference for item in items if isinstance(item, Existing)]
    pending = [item.file for item in items if isinstance(item, Pending)]
    return retained, pending


@dataclass(frozen=True)
class Uploaded:
    filename: str
    reference: AssetReference


@dataclass(frozen=True)
class Failed:
    filename: str
    reason: str


UploadOutcome: TypeAlias = Uploaded | Failed


@dataclass
class BatchResult:
    """One outcome per submitted file, in submission order"""

    outcomes: list[UploadOutcome] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(isinstance(outcome, Failed) for outcome in self.outcomes)

    @property
    def succeeded(self) -> list[AssetReference]:
        return [o.reference for o in self.outcomes if isinstance(o, Uploaded)]

    @property
    def failures(self) -> list[Failed]:
        return [o for o in self.outcomes if isinstance(o, Failed)]

    @property
    def reasons(self) -> list[str]:
        return [f"{f.filename}: {f.reason}" for f in self.failures]


@dataclass
class CompensationReport:
    deleted: list[AssetReference] = field(default_factory=list)
    failed: list[AssetReference] = field(default_factory=list)
    skipped: list[AssetReference] = field(default_factory=list)
