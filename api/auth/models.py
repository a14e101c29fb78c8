"""
Authentication models for users and tokens
"""
from datetime import datetime, timezone
import uuid
from sqlmodel import Field, SQLModel
from pydantic import ConfigDict


class User(SQLModel, table=True):
    """Site editor. Owns the records it creates."""

    __tablename__ = "users"

    # Primary identifiers
    id: uuid.UUID | None = Field(default_factory=uuid.uuid4, primary_key=True)

    # Authentication
    email: str = Field(unique=True, index=True, max_length=255)
    username: str = Field(unique=True, index=True, max_length=50)
    hashed_password: str | None = Field(default=None, max_length=255)

    # Profile
    full_name: str | None = Field(default=None, max_length=255)

    # Status flags
    is_active: bool = Field(default=True)

    # Timestamps
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_login: datetime | None = Field(default=None)

    model_config = ConfigDict(from_attributes=True)


# Request/Response Models

class TokenResponse(SQLModel):
    """Authentication token response"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserPublic(SQLModel):
    """Public user information"""
    id: uuid.UUID
    email: str
    username: str
    full_name: str | None
    is_active: bool
    created_at: datetime
    last_login: datetime | None
