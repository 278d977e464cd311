"""Tests for password hashing and JWT utilities."""
from datetime import timedelta
from unittest.mock import AsyncMock

import jwt
import pytest

from api.auth import (
    AuthService,
    create_access_token,
    get_current_user_id,
    get_user_id_from_token,
    hash_password,
    verify_password,
)
from api.config import config
from catalog.errors import UnauthenticatedError
from catalog.models import UserData
from catalog.repository import UserRepository


def test_create_and_verify_token(user_ids):
    token = create_access_token(user_ids["alice"])

    payload = jwt.decode(token, config.secret_key, algorithms=[config.algorithm])
    assert payload["sub"] == user_ids["alice"]
    assert "iat" in payload
    assert "exp" in payload
    assert get_user_id_from_token(token) == user_ids["alice"]


def test_expired_token(user_ids):
    token = create_access_token(user_ids["alice"], expires_delta=timedelta(seconds=-10))

    with pytest.raises(UnauthenticatedError) as exc_info:
        get_user_id_from_token(token)
    assert exc_info.value.message == "Token has expired"


def test_token_signed_with_other_key(user_ids):
    token = jwt.encode({"sub": user_ids["alice"]}, "some-other-secret", algorithm="HS256")

    with pytest.raises(UnauthenticatedError):
        get_user_id_from_token(token)


def test_token_without_subject():
    token = jwt.encode({"scope": "books"}, config.secret_key, algorithm=config.algorithm)

    with pytest.raises(UnauthenticatedError):
        get_user_id_from_token(token)


@pytest.mark.asyncio
async def test_missing_credentials():
    with pytest.raises(UnauthenticatedError):
        await get_current_user_id(None)


def test_password_hash_round_trip():
    password_hash = hash_password("correct horse battery staple")

    assert password_hash != "correct horse battery staple"
    assert verify_password("correct horse battery staple", password_hash)
    assert not verify_password("Tr0ub4dor&3", password_hash)


def test_verify_against_malformed_hash():
    assert verify_password("secret123", "not-a-bcrypt-hash") is False


class TestAuthService:
    """Test cases for AuthService."""

    @pytest.fixture
    def users(self):
        return AsyncMock(spec=UserRepository)

    @pytest.mark.asyncio
    async def test_signup_stores_hash_and_issues_token(self, users, user_ids):
        async def create_user(username, email, password_hash):
            return UserData(id=user_ids["bob"], username=username, email=email, password_hash=password_hash)

        users.create_user.side_effect = create_user
        service = AuthService(users)

        user, token = await service.signup("bob", "bob@example.com", "hunter22")

        assert verify_password("hunter22", user.password_hash)
        assert get_user_id_from_token(token) == user_ids["bob"]

    @pytest.mark.asyncio
    async def test_login_unknown_email(self, users):
        users.get_by_email.return_value = None
        service = AuthService(users)

        with pytest.raises(UnauthenticatedError):
            await service.login("nobody@example.com", "whatever")
