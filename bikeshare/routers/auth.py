"""
Authentication router — signup, login and the caller's profile.

Together with /public/pricing, /payments/callback and /health these are
the only unauthenticated endpoints; everything else requires a JWT.

Endpoints:
  POST /auth/signup  — Register a new user and get a token
  POST /auth/login   — Authenticate and get a token
  GET   /auth/me     — Current user's profile
  PATCH /auth/me     — Update name and phone

Plaintext passwords exist only in memory during request processing; they
are hashed with Argon2id before any database operation and never logged.
RequestLoggingMiddleware records method, path, status and duration only,
so request bodies and the tokens in responses never reach the logs.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.database import get_db
from bikeshare.dependencies import get_current_user
from bikeshare.models.user import User
from bikeshare.schemas.auth import AuthSession, LoginRequest, RiderSignupRequest, SignupSession
from bikeshare.schemas.user import UserResponse, UserUpdateRequest
from bikeshare.security import access_token_lifetime
from bikeshare.services import auth_service, wallet_service

router = APIRouter()


@router.post(
    "/signup",
    response_model=SignupSession,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def signup(
    request: RiderSignupRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new rider.

    Creates the User and its empty Wallet in a single atomic transaction. Returns a JWT token so the
    user is immediately logged in after signup.

    - **email**: Must be a valid email format and not already registered
    - **password**: Minimum 8 characters
    - **first_name** / **last_name**: Required, 1-100 characters
    - **phone**: Optional mobile-money number, digits with an optional +
    """
    user, token = await auth_service.signup(
        db=db,
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        phone=request.phone,
    )

    wallet = await wallet_service.get_wallet(db, user.id)
    return SignupSession(
        user_id=user.id,
        email=user.email,
        user_type=user.user_type,
        token=token,
        expires_in=int(access_token_lifetime().total_seconds()),
        wallet_id=wallet.id,
        currency=wallet.currency,
    )


@router.post(
    "/login",
    response_model=AuthSession,
    summary="Authenticate and get a token",
)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with email and password.

    Returns a JWT bearer token that must be included in the Authorization
    header for all subsequent requests:

        Authorization: Bearer <token>

    The token expires after ACCESS_TOKEN_EXPIRE_MINUTES (default: 30).
    """
    user, token = await auth_service.login(
        db=db,
        email=request.email,
        password=request.password,
    )

    return AuthSession(
        user_id=user.id,
        email=user.email,
        user_type=user.user_type,
        token=token,
        expires_in=int(access_token_lifetime().total_seconds()),
    )


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get current user's profile",
)
async def get_my_profile(user: User = Depends(get_current_user)):
    return user


@router.patch(
    "/me",
    response_model=UserResponse,
    summary="Update profile fields",
)
async def update_my_profile(
    updates: UserUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Partial update: only the fields the client sent are changed.

    The phone number doubles as the mobile-money payer id for top-ups.
    """
    update_data = updates.model_dump(exclude_unset=True)

    for field, value in update_data.items():
        setattr(user, field, value)

    await db.flush()
    return user
