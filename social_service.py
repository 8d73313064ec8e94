"""
Write paths for the edge collections the read models count: subscriptions,
likes and comments.
"""

import logging
from typing import Optional

from bson import ObjectId
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import COMMENTS, LIKES, SUBSCRIPTIONS, USERS, VIDEOS, create_document, objid
from errors import Conflict, InvalidArgument, NotFound, describe_validation_errors
from schemas import Comment, Like, Subscription

logger = logging.getLogger(__name__)


class SocialService:
    def __init__(self, db: Database):
        self.db = db

    def toggle_subscription(self, channel_id, subscriber_id: ObjectId) -> dict:
        channel = objid(channel_id, "channelId")
        if channel == subscriber_id:
            raise InvalidArgument("You cannot subscribe to your own channel")
        if not self.db[USERS].find_one({"_id": channel}, {"_id": 1}):
            raise NotFound("Channel does not exist")

        edge = {"subscriber": subscriber_id, "channel": channel}
        subscribed = self._toggle(SUBSCRIPTIONS, Subscription(**edge).model_dump())
        logger.info("User %s %s channel %s", subscriber_id,
                    "subscribed to" if subscribed else "unsubscribed from", channel)
        return {
            "subscribed": subscribed,
            "subscribersCount": self.db[SUBSCRIPTIONS].count_documents({"channel": channel}),
        }

    def toggle_like(self, video_id, user_id: ObjectId) -> dict:
        video = self._visible_video(video_id, user_id)
        liked = self._toggle(LIKES, Like(video=video, likedBy=user_id).model_dump())
        return {
            "liked": liked,
            "likesCount": self.db[LIKES].count_documents({"video": video}),
        }

    def add_comment(self, video_id, user_id: ObjectId, content: Optional[str]) -> dict:
        if content is None or not content.strip():
            raise InvalidArgument("Comment content is required")
        video = self._visible_video(video_id, user_id)
        try:
            comment = Comment(video=video, owner=user_id, content=content.strip())
        except ValidationError as e:
            raise InvalidArgument("Invalid comment", describe_validation_errors(e.errors()))
        created = create_document(self.db, COMMENTS, comment.model_dump())
        logger.info("User %s commented on video %s", user_id, video)
        return created

    def _visible_video(self, video_id, user_id: ObjectId) -> ObjectId:
        oid = objid(video_id, "videoId")
        video = self.db[VIDEOS].find_one({"_id": oid}, {"owner": 1, "isPublished": 1})
        if not video or (not video.get("isPublished", True) and video.get("owner") != user_id):
            raise NotFound("Video not found")
        return oid

    def _toggle(self, collection: str, edge: dict) -> bool:
        """Remove the edge if present, else insert it. Returns True when it now exists."""
        if self.db[collection].delete_one(edge).deleted_count:
            return False
        try:
            create_document(self.db, collection, edge)
        except DuplicateKeyError:
            raise Conflict("Request conflicted with a concurrent change")
        return True
