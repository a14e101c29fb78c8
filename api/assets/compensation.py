"""
Best-effort cleanup of stored assets.

Used to roll back uploads that never made it into a committed record and
to prune references a committed record dropped. Deletions fan out
concurrently, each one settles on its own, and nothing is raised to the
caller.
"""

from concurrent.futures import ThreadPoolExecutor

from api.assets.models import AssetReference, CompensationReport
from core.exceptions import CompensationFailure
from core.logger import logger
from core.storage import AssetStore, AssetStoreError

MAX_WORKERS = 10


class CompensationManager:

    def __init__(self, store: AssetStore, max_workers: int = MAX_WORKERS):
        self.store = store
        self.max_workers = max_workers

    def _delete_one(self, reference: AssetReference) -> None:
        asset_id = self.store.asset_id_for(reference)
        if asset_id is None:
            raise LookupError(reference)
        try:
            self.store.delete(asset_id)
        except AssetStoreError as exc:
            raise CompensationFailure(reference, exc.message) from exc

    def delete(self, refs: list[AssetReference]) -> CompensationReport:
        """
        Delete every reference in refs. Never raises.

        Duplicates are deleted once; references the store does not own are
        skipped; failures are logged and reported.
        """
        report = CompensationReport()
        unique_refs = list(dict.fromkeys(refs))
        if not unique_refs:
            return report

        workers = min(len(unique_refs), self.max_workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._delete_one, ref): ref for ref in unique_refs}

        # Exiting the executor waits for every deletion to settle
        for future, ref in futures.items():
            exc = future.exception()
            if exc is None:
                report.deleted.append(ref)
            elif isinstance(exc, LookupError):
                logger.warning("Skipping cleanup of foreign asset reference %s", ref)
                report.skipped.append(ref)
            elif isinstance(exc, CompensationFailure):
                logger.error("Compensation failure: %s", exc)
                report.failed.append(ref)
            else:
                logger.error(
                    "Compensation failure: unexpected error deleting %s",
                    ref,
                    exc_info=exc,
                )
                report.failed.append(ref)

        logger.info(
            "Asset cleanup: %d deleted, %d failed, %d skipped",
            len(report.deleted),
            len(report.failed),
            len(report.skipped),
        )
        return report
