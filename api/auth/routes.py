"""
Authentication endpoints

HTTP   URI                  Action
----   ---                  ------
POST   /api/v1/auth/login   Exchange email/password for an access token
GET    /api/v1/auth/me      Current user profile
"""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from core.deps import SessionDep
from core.security import create_access_token
from core.config import get_settings
from api.auth.models import User, UserPublic, TokenResponse
from api.auth.deps import CurrentUser
import api.auth.services as auth_services

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=TokenResponse)
def login(
    session: SessionDep,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()]
) -> TokenResponse:
    """
    Login with email and password

    Username field should contain the email address.

    Raises:
        401: Invalid credentials
        403: Inactive account
    """
    user = auth_services.authenticate_user(
        session,
        form_data.username,
        form_data.password
    )

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )

    settings = get_settings()
    return TokenResponse(
        access_token=create_access_token({"sub": str(user.id)}),
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )


@router.get("/me", response_model=UserPublic)
def get_me(current_user: CurrentUser) -> User:
    """
    Return the authenticated user's profile
    """
    return current_user
