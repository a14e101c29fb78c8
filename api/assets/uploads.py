"""
Upload coordination for a batch of pending files.

A batch is validated as a whole before any I/O: one bad file rejects the
batch. Valid batches are uploaded concurrently, one worker per file, and
every upload settles independently. The result carries one outcome per
file so callers can compensate whatever did land when anything failed.
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
import uuid

from api.assets.compensation import CompensationManager
from api.assets.models import BatchResult, Failed, PendingFile, Uploaded
from core.config import Settings
from core.exceptions import ValidationError
from core.logger import logger
from core.storage import AssetStore, AssetStoreError, StoredAsset, UploadOptions


@dataclass(frozen=True)
class UploadLimits:
    max_file_size: int = 5 * 1024 * 1024
    max_files: int = 10
    allowed_types: frozenset[str] = frozenset(
        {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}
    )
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadLimits":
        return cls(
            max_file_size=settings.UPLOAD_MAX_FILE_SIZE,
            max_files=settings.UPLOAD_MAX_FILES,
            allowed_types=frozenset(t.lower() for t in settings.UPLOAD_ALLOWED_TYPES),
            timeout=settings.UPLOAD_TIMEOUT_SECONDS,
        )


def validate_file(file: PendingFile, limits: UploadLimits) -> str | None:
    """Return an error message for an invalid file, None if it is acceptable"""
    if file.size == 0:
        return f"File {file.filename} is empty"
    if file.size > limits.max_file_size:
        limit_mb = limits.max_file_size // (1024 * 1024)
        return f"File {file.filename} exceeds {limit_mb}MB limit"
    content_type = (file.content_type or "").lower()
    if content_type not in limits.allowed_types:
        return f"File {file.filename} has unsupported type: {file.content_type}"
    return None


def validate_batch(files: list[PendingFile], limits: UploadLimits) -> None:
    """
    Check every constraint of a batch without touching the store.

    Raises:
        ValidationError: on the first violation
    """
    if len(files) > limits.max_files:
        raise ValidationError(f"Maximum {limits.max_files} files allowed")

    for file in files:
        error = validate_file(file, limits)
        if error:
            raise ValidationError(error)


class UploadCoordinator:

    def __init__(
        self,
        store: AssetStore,
        limits: UploadLimits | None = None,
        compensation: CompensationManager | None = None,
    ):
        self.store = store
        self.limits = limits or UploadLimits()
        self.compensation = compensation or CompensationManager(store)

    def _upload_one(self, file: PendingFile, folder: str) -> StoredAsset:
        options = UploadOptions(
            folder=folder,
            public_id=uuid.uuid4().hex,
            resource_type="image",
            timeout=self.limits.timeout,
            content_type=file.content_type,
        )
        return self.store.upload(file.data, options)

    def _discard_late_upload(self, future: Future) -> None:
        # An upload reported as timed out landed after all; remove it
        if future.cancelled() or future.exception() is not None:
            return
        stored = future.result()
        logger.warning("Discarding upload that finished after its deadline: %s", stored.url)
        self.compensation.delete([stored.url])

    def submit(self, files: list[PendingFile], folder: str = "uploads") -> BatchResult:
        """
        Validate and upload a batch of files.

        Args:
            files: Files to upload, in the order the client sent them
            folder: Store folder the objects are placed under

        Returns:
            BatchResult with one Uploaded/Failed outcome per file

        Raises:
            ValidationError: if any file fails pre-validation (nothing is uploaded)
        """
        validate_batch(files, self.limits)
        if not files:
            return BatchResult()

        logger.info("Uploading %d file(s) to %s", len(files), folder)
        executor = ThreadPoolExecutor(max_workers=len(files))
        try:
            futures = [executor.submit(self._upload_one, file, folder) for file in files]
            # All uploads start together, so one deadline bounds each of them
            wait(futures, timeout=self.limits.timeout)
        finally:
            # Stragglers keep running; their results are discarded below
            executor.shutdown(wait=False)

        result = BatchResult()
        for file, future in zip(files, futures):
            if not future.done():
                future.add_done_callback(self._discard_late_upload)
                result.outcomes.append(Failed(file.filename, "timeout"))
                continue

            exc = future.exception()
            if exc is None:
                result.outcomes.append(Uploaded(file.filename, future.result().url))
            elif isinstance(exc, AssetStoreError):
                logger.error("Failed to upload %s: %s", file.filename, exc.message)
                result.outcomes.append(Failed(file.filename, f"{exc.reason}: {exc.message}"))
            else:
                logger.error("Failed to upload %s", file.filename, exc_info=exc)
                result.outcomes.append(Failed(file.filename, "unexpected error"))

        if result.failed:
            logger.warning(
                "Upload batch failed: %d of %d uploads failed",
                len(result.failures),
                len(files),
            )
        return result
