"""
FastAPI dependencies: services bound to the request's database and the
authenticated caller resolved from the access token.
"""

from functools import lru_cache
from typing import Optional

from bson import ObjectId
from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from config import get_settings
from database import USERS, get_db, is_valid_id
from errors import Unauthorized
from media import MediaStore, build_media_store
from read_models import ReadModelBuilder
from security import ACCESS, decode_token
from social_service import SocialService
from user_service import SAFE_USER_PROJECTION, UserService
from video_service import VideoService

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache()
def get_media_store() -> MediaStore:
    return build_media_store(get_settings())


def get_read_models(db: Database = Depends(get_db)) -> ReadModelBuilder:
    return ReadModelBuilder(db)


def get_user_service(db: Database = Depends(get_db),
                     media: MediaStore = Depends(get_media_store)) -> UserService:
    return UserService(db, media)


def get_video_service(db: Database = Depends(get_db),
                      media: MediaStore = Depends(get_media_store)) -> VideoService:
    return VideoService(db, media)


def get_social_service(db: Database = Depends(get_db)) -> SocialService:
    return SocialService(db)


def _access_token(credentials: Optional[HTTPAuthorizationCredentials],
                  cookie_token: Optional[str]) -> Optional[str]:
    # an explicit Authorization header wins over the session cookie
    if credentials:
        return credentials.credentials
    return cookie_token or None


def _resolve_user(db: Database, token: Optional[str]) -> dict:
    payload = decode_token(token, ACCESS)
    if not is_valid_id(payload["_id"]):
        raise Unauthorized("Invalid access token")
    user = db[USERS].find_one({"_id": ObjectId(payload["_id"])}, SAFE_USER_PROJECTION)
    if not user:
        raise Unauthorized("Invalid access token")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    access_token: Optional[str] = Cookie(None, alias="accessToken"),
    db: Database = Depends(get_db),
) -> dict:
    return _resolve_user(db, _access_token(credentials, access_token))


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    access_token: Optional[str] = Cookie(None, alias="accessToken"),
    db: Database = Depends(get_db),
) -> Optional[dict]:
    """Like get_current_user, but an absent or bad token means an anonymous viewer."""
    token = _access_token(credentials, access_token)
    if not token:
        return None
    try:
        return _resolve_user(db, token)
    except Unauthorized:
        return None


def user_id_of(user: Optional[dict]) -> Optional[ObjectId]:
    return user["_id"] if user else None
