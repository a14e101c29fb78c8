"""
Record dependencies for dependency injection
"""

from typing import Annotated

from fastapi import Depends

from api.assets.compensation import CompensationManager
from api.assets.uploads import UploadCoordinator, UploadLimits
from api.records.commit import CommitCoordinator
from api.records.ordering import OrderPersistence
from api.records.store import RecordStore
from core.config import get_settings
from core.deps import AssetStoreDep, SessionDep


def get_record_store(session: SessionDep) -> RecordStore:
    return RecordStore(session)


RecordStoreDep = Annotated[RecordStore, Depends(get_record_store)]


def get_commit_coordinator(
    records: RecordStoreDep,
    asset_store: AssetStoreDep,
) -> CommitCoordinator:
    """
    Wire one coordinator per request around the shared asset store client.
    """
    settings = get_settings()
    compensation = CompensationManager(asset_store)
    uploader = UploadCoordinator(
        asset_store,
        limits=UploadLimits.from_settings(settings),
        compensation=compensation,
    )
    return CommitCoordinator(
        records,
        uploader,
        compensation,
        title_max_length=settings.TITLE_MAX_LENGTH,
    )


def get_order_persistence(records: RecordStoreDep) -> OrderPersistence:
    return OrderPersistence(records)


# Type aliases for clean usage in route signatures
CommitCoordinatorDep = Annotated[CommitCoordinator, Depends(get_commit_coordinator)]
OrderPersistenceDep = Annotated[OrderPersistence, Depends(get_order_persistence)]
