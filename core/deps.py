"""
Define functions/aliases for dependency injection
"""
from collections.abc import Generator
from typing import Annotated, TypeAlias
from sqlmodel import Session
from fastapi import Depends

from core.config import get_settings
from core.db import get_engine
from core.storage import S3AssetStore, create_asset_store
from core.storage import get_s3_client as build_s3_client


# Define db dependency
def get_db() -> Generator[Session, None, None]:
    with Session(get_engine()) as session:
        yield session


def get_s3_client():
    """Provide the shared S3 client (overridden in tests)"""
    return build_s3_client()


def get_asset_store(s3_client=Depends(get_s3_client)) -> S3AssetStore:
    return create_asset_store(s3_client, get_settings())


SessionDep: TypeAlias = Annotated[Session, Depends(get_db)]
AssetStoreDep: TypeAlias = Annotated[S3AssetStore, Depends(get_asset_store)]
