import jwt
import pytest
from bson import ObjectId

from config import Settings
from errors import Unauthorized
from security import (ACCESS, REFRESH, create_access_token, create_refresh_token, decode_token,
                      hash_password, verify_password)


@pytest.fixture
def user():
    return {"_id": ObjectId(), "email": "ana@videotube.dev", "username": "ana", "fullName": "Ana"}


def test_password_hash_round_trip():
    hashed = hash_password("s3cret")
    assert hashed != "s3cret"
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)


@pytest.mark.parametrize("password,hashed", [
    ("", "anything"),
    ("s3cret", ""),
    ("s3cret", None),
    ("s3cret", "not-a-bcrypt-hash"),
])
def test_verify_password_rejects_bad_input(password, hashed):
    assert verify_password(password, hashed) is False


def test_access_token_carries_identity(user):
    payload = decode_token(create_access_token(user), ACCESS)

    assert payload["_id"] == str(user["_id"])
    assert payload["username"] == "ana"
    assert payload["email"] == "ana@videotube.dev"
    assert payload["type"] == ACCESS


def test_refresh_tokens_are_unique(user):
    first = create_refresh_token(user["_id"])
    second = create_refresh_token(user["_id"])

    assert first != second
    assert decode_token(first, REFRESH)["_id"] == str(user["_id"])


def test_refresh_token_is_not_an_access_token(user):
    with pytest.raises(Unauthorized):
        decode_token(create_refresh_token(user["_id"]), ACCESS)


def test_token_type_is_checked_with_shared_secret(user):
    settings = Settings(ACCESS_TOKEN_SECRET="same", REFRESH_TOKEN_SECRET="same")
    token = create_refresh_token(user["_id"], settings)

    with pytest.raises(Unauthorized) as exc_info:
        decode_token(token, ACCESS, settings)
    assert exc_info.value.message == "Invalid access token"


def test_expired_token(user):
    settings = Settings(ACCESS_TOKEN_EXPIRE_MINUTES=-1)
    token = create_access_token(user, settings)

    with pytest.raises(Unauthorized) as exc_info:
        decode_token(token, ACCESS, settings)
    assert exc_info.value.message == "Token expired"


def test_tampered_token(user):
    token = jwt.encode({"_id": str(user["_id"]), "type": ACCESS}, "someone-else", algorithm="HS256")
    with pytest.raises(Unauthorized):
        decode_token(token, ACCESS)


@pytest.mark.parametrize("token", [None, ""])
def test_missing_token(token):
    with pytest.raises(Unauthorized) as exc_info:
        decode_token(token, ACCESS)
    assert exc_info.value.status_code == 401
