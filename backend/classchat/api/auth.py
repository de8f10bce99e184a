"""
Authentication API routes.

Routes:
    POST   /api/v1/auth/sessions   — Create session (login)
    GET    /api/v1/auth/me         — Get current authenticated member
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from classchat.database import get_db
from classchat.models.user import User
from classchat.schemas.user import LoginRequest, LoginResponse, UserResponse
from classchat.services.auth_service import authenticate_user, create_access_token
from classchat.middleware.rbac import get_current_user

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


@router.post("/sessions", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a new authentication session (login).
    The returned token is used both as a bearer token and as the
    `token` query parameter of the live channel.
    """
    user, error = await authenticate_user(db, body.username, body.password)

    if error:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error,
        )

    access_token = create_access_token(user.id, user.role.value)

    return LoginResponse(
        access_token=access_token,
        user=UserResponse.model_validate(user),
    )


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    current_user: User = Depends(get_current_user),
):
    """Retrieve the currently authenticated member's profile."""
    return UserResponse.model_validate(current_user)
