"""
Authentication service — signup and login business logic.

Signup flow:
  1. Check if email is already registered
  2. Hash the password with Argon2id
  3. Create the User and its (empty) Wallet in one database transaction
  4. Return a JWT token so the user is immediately logged in

Login flow:
  1. Look up user by email
  2. Verify password against stored hash
  3. Return a JWT token

Login returns the same error for "wrong password" and "email not found"
to prevent user enumeration.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.exceptions import DuplicateEmailError, InvalidCredentialsError
from bikeshare.logging_config import get_logger
from bikeshare.models.user import User, UserType
from bikeshare.security import hash_password, issue_access_token, verify_password
from bikeshare.services import wallet_service

logger = get_logger(__name__)


async def signup(
    db: AsyncSession,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str | None = None,
) -> tuple[User, str]:
    """
    Register a new rider together with their wallet.

    Both rows are created in a single transaction: if either fails,
    neither is persisted.

    Args:
        db: Database session.
        email: User's email (must be unique).
        password: Plaintext password (hashed before storage).
        first_name: Rider's first name.
        last_name: Rider's last name.
        phone: Optional phone number (mobile-money payer id).

    Returns:
        Tuple of (User instance, JWT token string).

    Raises:
        DuplicateEmailError: If the email is already registered.
    """
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise DuplicateEmailError(email)

    user = User(
        email=email,
        hashed_password=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        user_type=UserType.RIDER,
    )
    db.add(user)
    # Flush to get user.id for the wallet's foreign key
    await db.flush()

    await wallet_service.create_wallet(db, user.id)

    token = issue_access_token(user.id)
    logger.info("User signed up", extra_data={"user_id": str(user.id)})
    return user, token


async def login(
    db: AsyncSession,
    email: str,
    password: str,
) -> tuple[User, str]:
    """
    Authenticate a user and return a JWT token.

    Raises:
        InvalidCredentialsError: If email doesn't exist, the password is
            wrong, or the user is deactivated.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(password, user.hashed_password) or not user.is_active:
        raise InvalidCredentialsError()

    token = issue_access_token(user.id)
    return user, token
