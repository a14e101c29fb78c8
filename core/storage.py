"""
Object storage (AssetStore) configuration and adapter.

The boto3 client is built once from settings and handed to S3AssetStore
explicitly; record code never reaches for a global client.
"""

from dataclasses import dataclass
from functools import lru_cache
import mimetypes
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from core.config import Settings, get_settings
from core.logger import logger


class AssetStoreError(Exception):
    """Generic object store failure"""

    reason = "storage error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UploadTimeout(AssetStoreError):
    reason = "timeout"


class QuotaExceeded(AssetStoreError):
    reason = "quota exceeded"


class InvalidPayload(AssetStoreError):
    reason = "invalid payload"


# S3 error codes mapped onto the store's failure kinds
TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}
QUOTA_CODES = {
    "QuotaExceeded",
    "ServiceQuotaExceededException",
    "SlowDown",
    "TooManyRequests",
    "Throttling",
}
INVALID_PAYLOAD_CODES = {
    "EntityTooLarge",
    "EntityTooSmall",
    "InvalidArgument",
    "InvalidDigest",
    "InvalidRequest",
    "MalformedXML",
}
NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


@dataclass(frozen=True)
class UploadOptions:
    folder: str
    public_id: str
    resource_type: str = "image"
    timeout: float = 30.0
    content_type: str | None = None


@dataclass(frozen=True)
class StoredAsset:
    """Result of a successful upload: the public url and the store's id (key)"""

    url: str
    id: str


class AssetStore(Protocol):
    def upload(self, data: bytes, options: UploadOptions) -> StoredAsset: ...

    def delete(self, asset_id: str) -> bool: ...

    def asset_id_for(self, reference: str) -> str | None: ...


def parse_s3_uri(s3_uri: str) -> tuple[str, str]:
    """Parse S3 URI into bucket and prefix"""
    if not s3_uri.startswith("s3://"):
        raise ValueError("Invalid S3 path format. Must start with s3://")

    path_without_scheme = s3_uri[5:]
    if not path_without_scheme or path_without_scheme.startswith("/"):
        raise ValueError("Invalid S3 path format. Bucket name is required")

    if "//" in path_without_scheme:
        raise ValueError("Invalid S3 path format. Path cannot contain double slashes")

    if "/" in path_without_scheme:
        bucket, prefix = path_without_scheme.split("/", 1)
    else:
        bucket, prefix = path_without_scheme, ""

    if prefix and not prefix.endswith("/"):
        prefix += "/"

    return bucket, prefix


class S3AssetStore:
    """AssetStore backed by a single S3 bucket/prefix"""

    def __init__(
        self,
        s3_client,
        bucket_uri: str,
        public_base_url: str | None = None,
        region: str | None = None,
    ):
        self.s3_client = s3_client
        self.bucket, self.prefix = parse_s3_uri(bucket_uri)
        if public_base_url is None:
            if region:
                public_base_url = f"https://{self.bucket}.s3.{region}.amazonaws.com"
            else:
                public_base_url = f"https://{self.bucket}.s3.amazonaws.com"
        self.public_base_url = public_base_url.rstrip("/") + "/"

    def _key_for(self, options: UploadOptions) -> str:
        extension = ""
        if options.content_type:
            extension = mimetypes.guess_extension(options.content_type) or ""
        folder = options.folder.strip("/")
        return f"{self.prefix}{folder}/{options.public_id}{extension}"

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}{key}"

    def asset_id_for(self, reference: str) -> str | None:
        """
        Resolve a persisted reference (public url) back to its object key.
        Returns None for urls that do not belong to this store.
        """
        if not reference.startswith(self.public_base_url):
            return None
        key = reference[len(self.public_base_url):]
        if not key or not key.startswith(self.prefix):
            return None
        return key

    def upload(self, data: bytes, options: UploadOptions) -> StoredAsset:
        """
        Store one binary and return its public url and key.

        Raises:
            UploadTimeout, QuotaExceeded, InvalidPayload, AssetStoreError
        """
        if not data:
            raise InvalidPayload("Refusing to store an empty payload")

        key = self._key_for(options)
        extra = {"ContentType": options.content_type} if options.content_type else {}
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                Metadata={"resource-type": options.resource_type},
                **extra,
            )
        except (ReadTimeoutError, ConnectTimeoutError) as exc:
            raise UploadTimeout(f"Upload of {key} timed out") from exc
        except ClientError as exc:
            code = exc.response["Error"]["Code"]
            message = exc.response["Error"].get("Message", code)
            if code in TIMEOUT_CODES:
                raise UploadTimeout(message) from exc
            if code in QUOTA_CODES:
                raise QuotaExceeded(message) from exc
            if code in INVALID_PAYLOAD_CODES:
                raise InvalidPayload(message) from exc
            raise AssetStoreError(f"S3 error: {message}") from exc
        except BotoCoreError as exc:
            raise AssetStoreError(f"S3 error: {exc}") from exc

        logger.debug("Stored s3://%s/%s", self.bucket, key)
        return StoredAsset(url=self.url_for(key), id=key)

    def delete(self, asset_id: str) -> bool:
        """
        Delete one object. A missing object counts as deleted.

        Raises:
            AssetStoreError: for any other failure
        """
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=asset_id)
        except ClientError as exc:
            code = exc.response["Error"]["Code"]
            if code in NOT_FOUND_CODES:
                return True
            raise AssetStoreError(
                f"S3 error: {exc.response['Error'].get('Message', code)}"
            ) from exc
        except BotoCoreError as exc:
            raise AssetStoreError(f"S3 error: {exc}") from exc
        return True


@lru_cache
def get_s3_client():
    """
    Build the process-wide S3 client once.
    Every request carries the configured timeout at the transport level.
    """
    settings = get_settings()
    client_config = Config(
        connect_timeout=settings.UPLOAD_TIMEOUT_SECONDS,
        read_timeout=settings.UPLOAD_TIMEOUT_SECONDS,
        retries={"max_attempts": 2, "mode": "standard"},
        max_pool_connections=max(settings.UPLOAD_MAX_FILES, 10),
    )
    return boto3.client(
        "s3",
        region_name=settings.AWS_REGION,
        endpoint_url=settings.ASSET_ENDPOINT_URL,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        config=client_config,
    )


def create_asset_store(s3_client, settings: Settings) -> S3AssetStore:
    return S3AssetStore(
        s3_client,
        bucket_uri=settings.ASSET_BUCKET_URI,
        public_base_url=settings.ASSET_PUBLIC_BASE_URL,
        region=settings.AWS_REGION,
    )
