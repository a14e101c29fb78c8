import threading

import pytest
from botocore.exceptions import ClientError, ReadTimeoutError
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

from api.auth.models import User
from core.deps import get_asset_store, get_db, get_s3_client
from core.security import create_access_token, hash_password
from core.storage import S3AssetStore
from main import app

TEST_BUCKET_URI = "s3://gallery-assets/"
TEST_PUBLIC_BASE = "https://gallery-assets.s3.amazonaws.com/"


class MockS3Client:
    """Mock S3 client for testing"""

    def __init__(self):
        self.objects = {}  # {(bucket, key): {"Body": bytes, "ContentType": str}}
        self.put_calls = []
        self.delete_calls = []
        self.failing_bodies = {}  # {body: error code}
        self.failing_delete_keys = set()
        self.error_mode = None  # For simulating errors on every call
        self._lock = threading.Lock()

    def put_object(self, Bucket: str, Key: str, Body: bytes, **kwargs):
        """Mock put_object"""
        with self._lock:
            self.put_calls.append(Key)
        if self.error_mode == "timeout":
            raise ReadTimeoutError(endpoint_url=f"https://{Bucket}.s3.amazonaws.com")
        if self.error_mode:
            raise ClientError(
                {"Error": {"Code": self.error_mode, "Message": self.error_mode}},
                "PutObject",
            )
        if Body in self.failing_bodies:
            code = self.failing_bodies[Body]
            raise ClientError({"Error": {"Code": code, "Message": code}}, "PutObject")
        with self._lock:
            self.objects[(Bucket, Key)] = {
                "Body": Body,
                "ContentType": kwargs.get("ContentType"),
            }
        return {"ETag": '"mock"'}

    def delete_object(self, Bucket: str, Key: str):
        """Mock delete_object. Like S3, deleting a missing key succeeds."""
        with self._lock:
            self.delete_calls.append(Key)
        if Key in self.failing_delete_keys:
            raise ClientError(
                {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}},
                "DeleteObject",
            )
        with self._lock:
            self.objects.pop((Bucket, Key), None)
        return {}

    def fail_upload_of(self, body: bytes, code: str = "InternalError"):
        """Make uploads of this exact payload fail"""
        self.failing_bodies[body] = code

    def fail_delete_of(self, key: str):
        self.failing_delete_keys.add(key)

    def simulate_error(self, error_type: str):
        """
        Configure client to fail every upload

        Args:
            error_type: an S3 error code, or "timeout"
        """
        self.error_mode = error_type

    def keys(self) -> set[str]:
        return {key for _, key in self.objects}

    def add_object(self, key: str, body: bytes = b"existing") -> str:
        """Seed an object and return its public url"""
        self.objects[("gallery-assets", key)] = {"Body": body, "ContentType": "image/png"}
        return f"{TEST_PUBLIC_BASE}{key}"


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="mock_s3_client")
def mock_s3_client_fixture():
    """Provide a mock S3 client for testing"""
    return MockS3Client()


@pytest.fixture(name="asset_store")
def asset_store_fixture(mock_s3_client: MockS3Client):
    return S3AssetStore(mock_s3_client, TEST_BUCKET_URI)


@pytest.fixture(name="client")
def client_fixture(
    session: Session, mock_s3_client: MockS3Client, asset_store: S3AssetStore
):
    def get_db_override():
        return session

    def get_s3_client_override():
        return mock_s3_client

    def get_asset_store_override():
        return asset_store

    app.dependency_overrides[get_db] = get_db_override
    app.dependency_overrides[get_s3_client] = get_s3_client_override
    app.dependency_overrides[get_asset_store] = get_asset_store_override

    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def _make_user(session: Session, email: str, username: str) -> User:
    user = User(
        email=email,
        username=username,
        hashed_password=hash_password("TestPassword123"),
        full_name=username.title(),
        is_active=True,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture(name="test_user")
def test_user_fixture(session: Session) -> User:
    """Create a test user"""
    return _make_user(session, "editor@example.com", "editor")


@pytest.fixture(name="other_user")
def other_user_fixture(session: Session) -> User:
    return _make_user(session, "other@example.com", "other")


@pytest.fixture(name="auth_headers")
def auth_headers_fixture(test_user: User) -> dict:
    token = create_access_token({"sub": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(name="other_auth_headers")
def other_auth_headers_fixture(other_user: User) -> dict:
    token = create_access_token({"sub": str(other_user.id)})
    return {"Authorization": f"Bearer {token}"}
