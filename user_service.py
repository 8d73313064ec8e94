"""
Account operations: registration, sessions (login, logout, refresh-token
rotation), password and profile changes, avatar and cover image swaps.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from bson import ObjectId
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings, get_settings
from database import USERS, create_document, is_valid_id
from errors import Conflict, InternalError, InvalidArgument, NotFound, Unauthorized, describe_validation_errors
from media import IMAGE, MediaAsset, MediaStore, MediaStoreError, discard_media
from schemas import User
from security import REFRESH, create_access_token, create_refresh_token, decode_token, hash_password, verify_password

logger = logging.getLogger(__name__)

PRIVATE_FIELDS = ("passwordHash", "refreshToken")
SAFE_USER_PROJECTION = {name: 0 for name in PRIVATE_FIELDS}


def sanitize_user(user: Optional[dict]) -> Optional[dict]:
    if user is None:
        return None
    return {k: v for k, v in user.items() if k not in PRIVATE_FIELDS}


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class UserService:
    def __init__(self, db: Database, media: MediaStore, settings: Optional[Settings] = None):
        self.db = db
        self.media = media
        self.settings = settings or get_settings()

    @property
    def users(self):
        return self.db[USERS]

    def register(self, full_name: Optional[str], email: Optional[str], username: Optional[str],
                 password: Optional[str], avatar_path: Optional[str] = None,
                 cover_image_path: Optional[str] = None) -> dict:
        if any(_blank(v) for v in (full_name, email, username, password)):
            raise InvalidArgument("All fields are required")

        username = username.strip().lower()
        email = email.strip().lower()
        existing = self.users.find_one({"$or": [{"username": username}, {"email": email}]}, {"_id": 1})
        if existing:
            raise Conflict("User with email or username already exists")

        if not avatar_path:
            raise InvalidArgument("Avatar file is required")

        avatar = self._upload(avatar_path, "avatar")
        cover_image = None
        if cover_image_path:
            try:
                cover_image = self._upload(cover_image_path, "cover image")
            except InternalError:
                discard_media(self.media, avatar.as_ref(), IMAGE)
                raise
        uploaded = [a.as_ref() for a in (avatar, cover_image) if a]

        try:
            user = User(
                username=username,
                email=email,
                fullName=full_name.strip(),
                passwordHash=hash_password(password),
                avatar=avatar.as_ref(),
                coverImage=cover_image.as_ref() if cover_image else None,
            )
        except ValidationError as e:
            self._discard(uploaded)
            raise InvalidArgument("Invalid registration data", describe_validation_errors(e.errors()))

        try:
            created = create_document(self.db, USERS, user.model_dump())
        except DuplicateKeyError:
            self._discard(uploaded)
            raise Conflict("User with email or username already exists")
        except PyMongoError:
            self._discard(uploaded)
            raise

        logger.info("Registered user %s (%s)", created["_id"], username)
        return sanitize_user(created)

    def login(self, password: Optional[str], username: Optional[str] = None,
              email: Optional[str] = None) -> dict:
        if _blank(username) and _blank(email):
            raise InvalidArgument("username or email is required")
        if _blank(password):
            raise InvalidArgument("password is required")

        clauses = []
        if not _blank(username):
            clauses.append({"username": username.strip().lower()})
        if not _blank(email):
            clauses.append({"email": email.strip().lower()})
        user = self.users.find_one({"$or": clauses})
        if not user:
            raise NotFound("User does not exist")
        if not verify_password(password, user.get("passwordHash")):
            raise Unauthorized("Invalid user credentials")

        access_token, refresh_token = self._issue_tokens(user)
        logger.info("User %s logged in", user["_id"])
        return {"user": sanitize_user(user), "accessToken": access_token, "refreshToken": refresh_token}

    def logout(self, user_id: ObjectId) -> None:
        self.users.update_one({"_id": user_id}, {"$unset": {"refreshToken": ""}})
        logger.info("User %s logged out", user_id)

    def refresh(self, incoming_token: Optional[str]) -> dict:
        payload = decode_token(incoming_token, REFRESH, self.settings)
        if not is_valid_id(payload["_id"]):
            raise Unauthorized("Invalid refresh token")

        user = self.users.find_one({"_id": ObjectId(payload["_id"])})
        if not user:
            raise Unauthorized("Invalid refresh token")
        if incoming_token != user.get("refreshToken"):
            raise Unauthorized("Refresh token is expired or used")

        access_token, refresh_token = self._issue_tokens(user, expected=incoming_token)
        return {"accessToken": access_token, "refreshToken": refresh_token}

    def change_password(self, user_id: ObjectId, old_password: Optional[str],
                        new_password: Optional[str]) -> None:
        if _blank(old_password) or _blank(new_password):
            raise InvalidArgument("Old password and new password are required")
        user = self.users.find_one({"_id": user_id}, {"passwordHash": 1})
        if not user:
            raise NotFound("User not found")
        if not verify_password(old_password, user.get("passwordHash")):
            raise Unauthorized("Invalid old password")

        self.users.update_one(
            {"_id": user_id},
            {"$set": {"passwordHash": hash_password(new_password), "updatedAt": datetime.utcnow()}},
        )
        logger.info("User %s changed password", user_id)

    def update_account(self, user_id: ObjectId, full_name: Optional[str] = None,
                       username: Optional[str] = None, email: Optional[str] = None) -> dict:
        changes = {}
        if not _blank(full_name):
            changes["fullName"] = full_name.strip()
        if not _blank(username):
            changes["username"] = username.strip().lower()
        if not _blank(email):
            changes["email"] = email.strip().lower()
        if not changes:
            raise InvalidArgument("At least one field is required to update")

        changes["updatedAt"] = datetime.utcnow()
        try:
            user = self.users.find_one_and_update(
                {"_id": user_id},
                {"$set": changes},
                projection=SAFE_USER_PROJECTION,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise Conflict("Username or email already in use")
        if not user:
            raise NotFound("User not found")
        logger.info("User %s updated %s", user_id, ", ".join(k for k in changes if k != "updatedAt"))
        return user

    def update_avatar(self, user_id: ObjectId, path: Optional[str]) -> dict:
        return self._replace_image(user_id, "avatar", path, "Avatar")

    def update_cover_image(self, user_id: ObjectId, path: Optional[str]) -> dict:
        return self._replace_image(user_id, "coverImage", path, "Cover image")

    def _replace_image(self, user_id: ObjectId, field: str, path: Optional[str], label: str) -> dict:
        if not path:
            raise InvalidArgument(f"{label} file is missing")
        current = self.users.find_one({"_id": user_id}, {field: 1})
        if not current:
            raise NotFound("User not found")

        asset = self._upload(path, label.lower())
        try:
            user = self.users.find_one_and_update(
                {"_id": user_id},
                {"$set": {field: asset.as_ref(), "updatedAt": datetime.utcnow()}},
                projection=SAFE_USER_PROJECTION,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError:
            discard_media(self.media, asset.as_ref(), IMAGE)
            raise
        if not user:
            discard_media(self.media, asset.as_ref(), IMAGE)
            raise NotFound("User not found")

        discard_media(self.media, current.get(field), IMAGE)
        logger.info("User %s replaced %s", user_id, field)
        return user

    def _issue_tokens(self, user: dict, expected: Optional[str] = None) -> Tuple[str, str]:
        """Mint a token pair and persist the refresh token.

        With ``expected`` the write only lands if the stored refresh token is
        still that value, so a token can be rotated once.
        """
        access_token = create_access_token(user, self.settings)
        refresh_token = create_refresh_token(user["_id"], self.settings)
        query = {"_id": user["_id"]}
        if expected is not None:
            query["refreshToken"] = expected
        result = self.users.update_one(query, {"$set": {"refreshToken": refresh_token}})
        if result.matched_count == 0:
            raise Unauthorized("Refresh token is expired or used")
        return access_token, refresh_token

    def _upload(self, path: str, label: str) -> MediaAsset:
        try:
            return self.media.upload(path, IMAGE)
        except MediaStoreError as e:
            logger.error("Upload of %s failed: %s", label, e)
            raise InternalError(f"Error while uploading {label}")

    def _discard(self, refs) -> None:
        for ref in refs:
            discard_media(self.media, ref, IMAGE)
