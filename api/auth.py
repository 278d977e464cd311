"""
Authentication for the FastAPI API.

Passwords are stored as bcrypt hashes. Access tokens are HS256 JWTs whose
'sub' claim is the user id; the rest of the application only ever sees that id.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from api.config import config
from catalog.errors import UnauthenticatedError
from catalog.models import UserData
from catalog.repository import UserRepository

logger = structlog.get_logger(__name__)

# auto_error is off so a missing header goes through UnauthenticatedError (401)
security = HTTPBearer(auto_error=False)

# bcrypt only uses the first 72 bytes of a password
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a plain-text password with a fresh salt."""
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plain-text password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token for a user.

    Args:
        user_id: User id stored in the 'sub' claim
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=config.access_token_expire_minutes)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, config.secret_key, algorithm=config.algorithm)


def get_user_id_from_token(token: str) -> str:
    """
    Verify a token and return the user id it identifies.

    Raises:
        UnauthenticatedError: If the token is expired, malformed or has no subject
    """
    try:
        payload = jwt.decode(token, config.secret_key, algorithms=[config.algorithm])
    except ExpiredSignatureError:
        raise UnauthenticatedError("Token has expired")
    except InvalidTokenError:
        raise UnauthenticatedError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthenticatedError("Invalid token")
    return user_id


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Resolve the bearer credential on the request to a user id.

    Raises:
        UnauthenticatedError: If the credential is missing or invalid
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Authorization header is required")

    try:
        return get_user_id_from_token(credentials.credentials)
    except UnauthenticatedError as e:
        logger.warning("Rejected bearer token", reason=e.message)
        raise


class AuthService:
    """Signup and login on top of the credential store."""

    def __init__(self, users: UserRepository):
        self.users = users

    async def signup(self, username: str, email: str, password: str) -> Tuple[UserData, str]:
        """
        Register a user and issue a token.

        Raises:
            DuplicateUserError: If the username or email is taken
        """
        user = await self.users.create_user(username, email, hash_password(password))
        return user, create_access_token(user.id)

    async def login(self, email: str, password: str) -> Tuple[UserData, str]:
        """
        Check credentials and issue a token.

        Raises:
            UnauthenticatedError: If the email is unknown or the password is wrong
        """
        user = await self.users.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Failed login attempt", email=email)
            raise UnauthenticatedError("Invalid email or password")

        logger.info("User logged in", user_id=user.id)
        return user, create_access_token(user.id)
