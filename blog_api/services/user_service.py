"""
User service: account registration and sign-in.

Users sign up with a role of USER; promoting an account to ADMIN or
blocking it happens outside the public API (``scripts/seed.py`` or a
direct database change).
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.auth import hash_password, verify_password
from blog_api.exceptions import ConflictError, NotFoundError, UnauthorizedError
from blog_api.models import User, UserRole, UserStatus
from blog_api.schemas import UserCreate

logger = logging.getLogger(__name__)


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


async def register_user(
    db: AsyncSession,
    data: UserCreate,
    role: UserRole = UserRole.USER,
) -> User:
    """
    Create a new ACTIVE account.

    Email uniqueness is checked up front for a clean 409; the unique
    constraint in the schema still guards against a concurrent sign-up,
    and the router translates that IntegrityError as well.
    """
    if await get_user_by_email(db, data.email) is not None:
        raise ConflictError("A user with this email already exists")

    user = User(
        name=data.name,
        email=data.email.lower(),
        password_hash=hash_password(data.password),
        role=role,
        status=UserStatus.ACTIVE,
    )
    db.add(user)
    await db.flush()
    logger.info("Registered user %s (%s)", user.id, role.value)
    return user


async def authenticate_user(db: AsyncSession, email: str, password: str) -> User:
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise UnauthorizedError("Incorrect email or password")
    if user.status != UserStatus.ACTIVE:
        logger.warning("Sign-in refused for %s user %s", user.status.value, user.id)
        raise UnauthorizedError("User account is not active")
    return user
