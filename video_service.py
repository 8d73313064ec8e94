"""
Video write paths: publish, edit, delete (with cascade), publish toggle and
view counting.
"""

import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import COMMENTS, LIKES, USERS, VIDEOS, create_document, objid
from errors import Forbidden, InternalError, InvalidArgument, NotFound, describe_validation_errors
from media import IMAGE, VIDEO, MediaAsset, MediaStore, MediaStoreError, discard_media
from schemas import Video

logger = logging.getLogger(__name__)


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class VideoService:
    def __init__(self, db: Database, media: MediaStore):
        self.db = db
        self.media = media

    @property
    def videos(self):
        return self.db[VIDEOS]

    def get_owned_video(self, video_id, user_id: ObjectId) -> dict:
        oid = objid(video_id, "videoId")
        video = self.videos.find_one({"_id": oid})
        if not video:
            raise NotFound("Video not found")
        if video.get("owner") != user_id:
            raise Forbidden("You are not the owner of this video")
        return video

    def publish(self, owner_id: ObjectId, title: Optional[str], description: Optional[str],
                video_path: Optional[str], thumbnail_path: Optional[str]) -> dict:
        if _blank(title):
            raise InvalidArgument("Title is required")
        if _blank(description):
            raise InvalidArgument("Description is required")
        if not video_path:
            raise InvalidArgument("Video file is required")
        if not thumbnail_path:
            raise InvalidArgument("Thumbnail is required")

        video_file = self._upload(video_path, VIDEO, "video file")
        try:
            thumbnail = self._upload(thumbnail_path, IMAGE, "thumbnail")
        except InternalError:
            discard_media(self.media, video_file.as_ref(), VIDEO)
            raise

        try:
            video = Video(
                owner=owner_id,
                title=title.strip(),
                description=description.strip(),
                videoFile=video_file.as_ref(),
                thumbnail=thumbnail.as_ref(),
                duration=video_file.duration or 0,
            )
        except ValidationError as e:
            self._discard(video_file, thumbnail)
            raise InvalidArgument("Invalid video data", describe_validation_errors(e.errors()))

        try:
            created = create_document(self.db, VIDEOS, video.model_dump())
        except PyMongoError:
            self._discard(video_file, thumbnail)
            raise

        logger.info("User %s published video %s", owner_id, created["_id"])
        return created

    def update(self, video_id, user_id: ObjectId, title: Optional[str] = None,
               description: Optional[str] = None, thumbnail_path: Optional[str] = None) -> dict:
        if _blank(title) and _blank(description) and not thumbnail_path:
            raise InvalidArgument("At least one field is required to update")
        video = self.get_owned_video(video_id, user_id)

        changes = {}
        if not _blank(title):
            changes["title"] = title.strip()
        if not _blank(description):
            changes["description"] = description.strip()
        thumbnail = None
        if thumbnail_path:
            thumbnail = self._upload(thumbnail_path, IMAGE, "thumbnail")
            changes["thumbnail"] = thumbnail.as_ref()
        changes["updatedAt"] = datetime.utcnow()

        try:
            updated = self.videos.find_one_and_update(
                {"_id": video["_id"]},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError:
            if thumbnail:
                discard_media(self.media, thumbnail.as_ref(), IMAGE)
            raise

        if thumbnail:
            discard_media(self.media, video.get("thumbnail"), IMAGE)
        logger.info("User %s updated video %s", user_id, video["_id"])
        return updated

    def delete(self, video_id, user_id: ObjectId) -> dict:
        video = self.get_owned_video(video_id, user_id)
        self.videos.delete_one({"_id": video["_id"]})
        logger.info("User %s deleted video %s", user_id, video["_id"])

        self._cascade(video["_id"])
        discard_media(self.media, video.get("videoFile"), VIDEO)
        discard_media(self.media, video.get("thumbnail"), IMAGE)
        return {"_id": video["_id"]}

    def toggle_publish(self, video_id, user_id: ObjectId) -> dict:
        video = self.get_owned_video(video_id, user_id)
        is_published = not video.get("isPublished", True)
        self.videos.update_one(
            {"_id": video["_id"]},
            {"$set": {"isPublished": is_published, "updatedAt": datetime.utcnow()}},
        )
        logger.info("Video %s is now %s", video["_id"], "published" if is_published else "unpublished")
        return {"_id": video["_id"], "isPublished": is_published}

    def record_view(self, video_id: ObjectId, viewer_id: Optional[ObjectId] = None) -> None:
        self.videos.update_one({"_id": video_id}, {"$inc": {"views": 1}})
        if viewer_id is None:
            return
        # move to the end: watchHistory is kept oldest first
        users = self.db[USERS]
        users.update_one({"_id": viewer_id}, {"$pull": {"watchHistory": video_id}})
        users.update_one({"_id": viewer_id}, {"$push": {"watchHistory": video_id}})

    def _cascade(self, video_id: ObjectId) -> None:
        for name in (LIKES, COMMENTS):
            try:
                removed = self.db[name].delete_many({"video": video_id}).deleted_count
                logger.debug("Removed %d %s of video %s", removed, name, video_id)
            except PyMongoError as e:
                logger.warning("Could not remove %s of deleted video %s: %s", name, video_id, e)
        try:
            self.db[USERS].update_many({"watchHistory": video_id}, {"$pull": {"watchHistory": video_id}})
        except PyMongoError as e:
            logger.warning("Could not prune watch history of deleted video %s: %s", video_id, e)

    def _discard(self, video_file: MediaAsset, thumbnail: MediaAsset) -> None:
        discard_media(self.media, video_file.as_ref(), VIDEO)
        discard_media(self.media, thumbnail.as_ref(), IMAGE)

    def _upload(self, path: str, resource_type: str, label: str) -> MediaAsset:
        try:
            return self.media.upload(path, resource_type)
        except MediaStoreError as e:
            logger.error("Upload of %s failed: %s", label, e)
            raise InternalError(f"Error while uploading {label}")
