"""
Commit coordination for asset-backed records.

A commit runs VALIDATING -> UPLOADING -> RECONCILING -> PERSISTING -> DONE.
The ordering is what keeps the store and the database consistent without
a shared transaction:

- nothing is uploaded until every input check has passed;
- a failed upload batch is rolled back and the database is never written;
- a failed write only removes the uploads of this attempt;
- references the record dropped are removed only after the write commits.

Concurrent edits of one record are not serialised; the last write wins.
"""

from dataclasses import dataclass, field
from enum import Enum
import uuid

from api.assets.compensation import CompensationManager
from api.assets.models import AssetReference, UploadItem, split_items
from api.assets.reconcile import reconcile, retained_references
from api.assets.uploads import UploadCoordinator, validate_batch
from api.auth.models import User
from api.records.models import KIND_POLICIES, KindPolicy, Record, RecordKind
from api.records.store import RecordNotFoundError, RecordStore, RecordStoreError
from core.exceptions import (
    AuthError,
    CommitError,
    PersistError,
    RecordNotFound,
    UploadError,
    ValidationError,
)
from core.logger import logger

DEFAULT_TITLE_MAX_LENGTH = 200


class CommitState(str, Enum):
    VALIDATING = "validating"
    UPLOADING = "uploading"
    COMPENSATING_UPLOADS = "compensating_uploads"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    COMPENSATING_NEW = "compensating_new"
    DONE = "done"
    FAILED = "failed"


@dataclass
class CommitRequest:
    kind: RecordKind
    title: str | None = None
    record_id: uuid.UUID | None = None
    description: str | None = None
    section: str | None = None
    items: list[UploadItem] = field(default_factory=list)


@dataclass
class CommitResult:
    success: bool
    message: str
    states: list[CommitState] = field(default_factory=list)
    record_id: uuid.UUID | None = None
    urls: list[AssetReference] = field(default_factory=list)
    removed: list[AssetReference] = field(default_factory=list)
    error: CommitError | None = None
    created: bool = False

    @property
    def state(self) -> CommitState | None:
        return self.states[-1] if self.states else None


class _Attempt:
    """Mutable bookkeeping for one commit run"""

    def __init__(self, request: CommitRequest):
        self.request = request
        self.states: list[CommitState] = []
        self.existing: Record | None = None
        self.uploaded: list[AssetReference] = []

    def enter(self, state: CommitState) -> None:
        self.states.append(state)
        logger.debug("Commit %s -> %s", self.request.kind.value, state.value)


class CommitCoordinator:

    def __init__(
        self,
        records: RecordStore,
        uploader: UploadCoordinator,
        compensation: CompensationManager,
        title_max_length: int = DEFAULT_TITLE_MAX_LENGTH,
    ):
        self.records = records
        self.uploader = uploader
        self.compensation = compensation
        self.title_max_length = title_max_length

    ###########################################################################
    # Validation
    ###########################################################################

    def _require_principal(self, principal: User | None) -> User:
        if principal is None:
            raise AuthError("Not authenticated. Please sign in.", authenticated=False)
        if not principal.is_active:
            raise AuthError("Inactive user")
        return principal

    def _check_owner(self, record: Record, principal: User, action: str) -> None:
        if record.owner_id != principal.id:
            raise AuthError(f"You are not authorized to {action} this {record.kind.value}")

    def _load(self, record_id: uuid.UUID, kind: RecordKind) -> Record:
        try:
            record = self.records.get(record_id)
        except RecordNotFoundError as exc:
            raise RecordNotFound(f"{kind.value.capitalize()} not found") from exc
        except RecordStoreError as exc:
            raise PersistError(f"Failed to fetch {kind.value} data") from exc
        if record.kind != kind:
            raise RecordNotFound(f"{kind.value.capitalize()} not found")
        return record

    def _clean_title(self, request: CommitRequest, policy: KindPolicy) -> str | None:
        title = (request.title or "").strip()
        if not title:
            if policy.title_required:
                raise ValidationError("Title is required")
            return None
        if len(title) > self.title_max_length:
            raise ValidationError(
                f"Title must be at most {self.title_max_length} characters"
            )
        return title

    def _validate(self, attempt: _Attempt, principal: User | None) -> User:
        request = attempt.request
        policy = KIND_POLICIES[request.kind]

        self._clean_title(request, policy)
        if policy.keyed_by_section and not (request.section or "").strip():
            raise ValidationError("Section is required")

        retained, pending = split_items(request.items)
        validate_batch(pending, self.uploader.limits)

        user = self._require_principal(principal)

        if request.record_id is not None:
            attempt.existing = self._load(request.record_id, request.kind)
        elif policy.keyed_by_section:
            try:
                attempt.existing = self.records.find_by_section(
                    request.kind, request.section.strip()
                )
            except RecordStoreError as exc:
                raise PersistError(f"Failed to fetch {request.kind.value} data") from exc

        if attempt.existing is not None:
            self._check_owner(attempt.existing, user, "update")
            if policy.keyed_by_section and attempt.existing.section != request.section.strip():
                raise ValidationError(
                    f"Section of an existing {request.kind.value} cannot be changed"
                )

        previous = attempt.existing.asset_refs if attempt.existing else []
        final_count = len(retained_references(previous, retained)) + len(pending)
        if final_count < policy.min_assets:
            raise ValidationError("At least one image is required")
        if policy.max_assets is not None and final_count > policy.max_assets:
            raise ValidationError(
                f"A {request.kind.value} can hold at most {policy.max_assets} image(s)"
            )
        return user

    ###########################################################################
    # Commit
    ###########################################################################

    def _persist(
        self, attempt: _Attempt, user: User, final: list[AssetReference]
    ) -> tuple[uuid.UUID, bool]:
        request = attempt.request
        policy = KIND_POLICIES[request.kind]
        title = self._clean_title(request, policy)
        description = (request.description or "").strip() or None

        if attempt.existing is None:
            record = Record(
                kind=request.kind,
                title=title,
                description=description,
                section=(request.section or "").strip() or None,
                asset_refs=final,
                owner_id=user.id,
                position_index=self.records.next_position(request.kind),
            )
            return self.records.insert(record), True

        record_id = attempt.existing.id
        patch = {"title": title, "description": description, "asset_refs": final}
        self.records.update(record_id, patch)
        return record_id, False

    def _run(self, attempt: _Attempt, principal: User | None) -> CommitResult:
        request = attempt.request

        attempt.enter(CommitState.VALIDATING)
        user = self._validate(attempt, principal)
        retained, pending = split_items(request.items)
        previous = list(attempt.existing.asset_refs) if attempt.existing else []

        attempt.enter(CommitState.UPLOADING)
        batch = self.uploader.submit(pending, folder=KIND_POLICIES[request.kind].folder)
        if batch.failed:
            attempt.enter(CommitState.COMPENSATING_UPLOADS)
            self.compensation.delete(batch.succeeded)
            raise UploadError(
                f"Failed to upload some images: {', '.join(batch.reasons)}",
                reasons=batch.reasons,
            )
        attempt.uploaded = batch.succeeded

        attempt.enter(CommitState.RECONCILING)
        reconciliation = reconcile(previous, retained, attempt.uploaded)

        attempt.enter(CommitState.PERSISTING)
        try:
            record_id, created = self._persist(attempt, user, reconciliation.final)
        except RecordStoreError as exc:
            attempt.enter(CommitState.COMPENSATING_NEW)
            self.compensation.delete(attempt.uploaded)
            attempt.uploaded = []
            raise PersistError(
                f"Failed to save {request.kind.value}. Please try again."
            ) from exc

        # Now referenced by the committed record
        attempt.uploaded = []

        # The record no longer references these; pruning failures are only logged
        self.compensation.delete(reconciliation.to_remove)

        attempt.enter(CommitState.DONE)
        verb = "created" if created else "updated"
        return CommitResult(
            success=True,
            message=f"{request.kind.value.capitalize()} {verb} successfully",
            states=attempt.states,
            record_id=record_id,
            urls=reconciliation.final,
            removed=reconciliation.to_remove,
            created=created,
        )

    def commit(self, request: CommitRequest, principal: User | None) -> CommitResult:
        """
        Create or update a record from client-submitted items.

        Never raises: every outcome is returned as a CommitResult.
        """
        attempt = _Attempt(request)
        try:
            return self._run(attempt, principal)
        except CommitError as exc:
            return self._failed(attempt, exc)
        except Exception:
            logger.exception("Unexpected error committing %s", request.kind.value)
            if attempt.uploaded:
                attempt.enter(CommitState.COMPENSATING_NEW)
                self.compensation.delete(attempt.uploaded)
            return self._failed(
                attempt, PersistError("An unexpected error occurred. Please try again.")
            )

    ###########################################################################
    # Delete
    ###########################################################################

    def delete(
        self, kind: RecordKind, record_id: uuid.UUID, principal: User | None
    ) -> CommitResult:
        """
        Delete a record, then every asset it referenced.
        A failed row delete leaves all assets in place.
        """
        attempt = _Attempt(CommitRequest(kind=kind, record_id=record_id))
        try:
            attempt.enter(CommitState.VALIDATING)
            user = self._require_principal(principal)
            record = self._load(record_id, kind)
            self._check_owner(record, user, "delete")
            refs = list(record.asset_refs)

            attempt.enter(CommitState.PERSISTING)
            try:
                self.records.delete(record_id)
            except RecordStoreError as exc:
                raise PersistError(
                    f"Failed to delete {kind.value} from database. Please try again."
                ) from exc

            self.compensation.delete(refs)
            attempt.enter(CommitState.DONE)
            return CommitResult(
                success=True,
                message=f"{kind.value.capitalize()} deleted successfully",
                states=attempt.states,
                record_id=record_id,
                removed=refs,
            )
        except CommitError as exc:
            return self._failed(attempt, exc)

    def _failed(self, attempt: _Attempt, exc: CommitError) -> CommitResult:
        attempt.enter(CommitState.FAILED)
        logger.warning(
            "%s commit failed (%s): %s",
            attempt.request.kind.value,
            type(exc).__name__,
            exc.message,
        )
        return CommitResult(
            success=False,
            message=exc.message,
            states=attempt.states,
            record_id=attempt.request.record_id,
            error=exc,
        )
