"""
Read models: denormalized, viewer-relative views of videos and channels.

Counts (likes, comments, subscribers, videos) and viewer flags (isLiked,
isSubscribed) are never stored; every view joins the edge collections at
read time through a Pipeline plan. The *_plan functions only build plans;
ReadModelBuilder checks inputs, runs the plans and shapes the results.
"""

import math
from dataclasses import dataclass
from typing import Optional

from bson import ObjectId
from pymongo.database import Database

from config import Settings, get_settings
from database import COMMENTS, LIKES, SUBSCRIPTIONS, USERS, VIDEOS, is_valid_id, objid
from errors import InvalidArgument, NotFound
from pipeline import (Compute, Join, Match, Paginate, Pipeline, Project, Sort,
                      TextSearch, Unwind, contains, size)

# API sort key -> document field. "userId" groups a listing by owner.
SORT_FIELDS = {
    "createdAt": "createdAt",
    "title": "title",
    "views": "views",
    "duration": "duration",
    "userId": "owner",
}
SORT_TYPES = {"asc": False, "1": False, "desc": True, "-1": True}
SEARCH_PATHS = ("title", "description")
# $skip is encoded as a signed 64-bit BSON int
MAX_SKIP = 2 ** 63 - 1

VIDEO_DETAIL_FIELDS = (
    "_id", "videoFile", "thumbnail", "title", "description", "views", "duration",
    "isPublished", "createdAt", "updatedAt", "likesCount", "isLiked",
    "owner._id", "owner.username", "owner.fullName", "owner.avatar.url",
    "owner.subscribersCount", "owner.isSubscribed",
)
VIDEO_LIST_FIELDS = (
    "_id", "title", "description", "thumbnail", "videoFile", "duration", "views",
    "isPublished", "owner", "createdAt",
    "ownerDetails._id", "ownerDetails.username", "ownerDetails.avatar.url",
)
CHANNEL_FIELDS = (
    "_id", "fullName", "username", "email", "avatar.url", "coverImage.url", "createdAt",
    "subscribersCount", "channelsSubscribedToCount", "isSubscribed", "totalVideos",
    "videos._id", "videos.title", "videos.thumbnail.url", "videos.duration",
    "videos.views", "videos.isPublished", "videos.createdAt",
)
USER_VIDEO_FIELDS = (
    "_id", "videoFile", "thumbnail", "title", "description", "views", "duration",
    "isPublished", "createdAt", "likesCount", "commentsCount", "isLiked",
    "owner._id", "owner.username", "owner.avatar.url",
)
HISTORY_FIELDS = (
    "_id", "videoFile", "thumbnail", "title", "description", "views", "duration", "createdAt",
    "owner._id", "owner.username", "owner.fullName", "owner.avatar.url",
)
COMMENT_FIELDS = (
    "_id", "content", "video", "createdAt", "updatedAt",
    "owner._id", "owner.username", "owner.fullName", "owner.avatar.url",
)


def _visible_to(viewer_id: Optional[ObjectId]) -> dict:
    """Published videos, plus the viewer's own unpublished ones."""
    if viewer_id is None:
        return {"isPublished": True}
    return {"$or": [{"isPublished": True}, {"owner": viewer_id}]}


def video_detail_plan(video_id: ObjectId, viewer_id: Optional[ObjectId] = None) -> Pipeline:
    return Pipeline(VIDEOS).then(
        Match({"_id": video_id}),
        Join(LIKES, "_id", "video", "likes"),
        Join(USERS, "owner", "_id", "owner"),
        Unwind("owner"),
        Join(SUBSCRIPTIONS, "owner._id", "channel", "ownerSubscribers"),
        Compute({
            "likesCount": size("likes"),
            "isLiked": contains(viewer_id, "likes.likedBy"),
            "owner.subscribersCount": size("ownerSubscribers"),
            "owner.isSubscribed": contains(viewer_id, "ownerSubscribers.subscriber"),
        }),
        Project(VIDEO_DETAIL_FIELDS),
    )


def channel_profile_plan(username: str, viewer_id: Optional[ObjectId] = None) -> Pipeline:
    return Pipeline(USERS).then(
        Match({"username": username.strip().lower()}),
        Join(SUBSCRIPTIONS, "_id", "channel", "subscribers"),
        Join(SUBSCRIPTIONS, "_id", "subscriber", "subscribedTo"),
        Join(VIDEOS, "_id", "owner", "videos"),
        # the owner sees unpublished uploads in their own channel
        Compute({
            "videos": {"$filter": {
                "input": "$videos",
                "as": "video",
                "cond": {"$or": [
                    {"$eq": ["$$video.isPublished", True]},
                    {"$eq": ["$$video.owner", viewer_id]},
                ]},
            }},
        }),
        Compute({
            "subscribersCount": size("subscribers"),
            "channelsSubscribedToCount": size("subscribedTo"),
            "isSubscribed": contains(viewer_id, "subscribers.subscriber"),
            "totalVideos": size("videos"),
        }),
        Project(CHANNEL_FIELDS),
    )


def list_videos_plan(params: "VideoListParams", search_index: Optional[str] = None) -> Pipeline:
    search = TextSearch(params.query, SEARCH_PATHS, search_index or None) if params.query else None
    owner = Match({"owner": params.owner_id}) if params.owner_id is not None else None
    return Pipeline(VIDEOS).then(
        search,
        owner,
        Match({"isPublished": True}),
        Join(USERS, "owner", "_id", "ownerDetails"),
        Unwind("ownerDetails"),
        Project(VIDEO_LIST_FIELDS),
        Sort(SORT_FIELDS[params.sort_by], descending=params.descending),
        Paginate(params.page, params.limit),
    )


def videos_by_user_plan(owner_id: ObjectId, viewer_id: Optional[ObjectId] = None) -> Pipeline:
    match = {"owner": owner_id}
    if viewer_id != owner_id:
        match["isPublished"] = True
    return Pipeline(VIDEOS).then(
        Match(match),
        Join(LIKES, "_id", "video", "likes"),
        Join(COMMENTS, "_id", "video", "comments"),
        Compute({
            "likesCount": size("likes"),
            "commentsCount": size("comments"),
            "isLiked": contains(viewer_id, "likes.likedBy"),
        }),
        Join(USERS, "owner", "_id", "owner"),
        Unwind("owner"),
        Sort("createdAt", descending=True),
        Project(USER_VIDEO_FIELDS),
    )


def watch_history_plan(video_ids: list, user_id: ObjectId) -> Pipeline:
    return Pipeline(VIDEOS).then(
        Match({"$and": [{"_id": {"$in": video_ids}}, _visible_to(user_id)]}),
        Join(USERS, "owner", "_id", "owner"),
        Unwind("owner"),
        Project(HISTORY_FIELDS),
    )


def comments_plan(video_id: ObjectId, page: int = 1, limit: int = 10) -> Pipeline:
    return Pipeline(COMMENTS).then(
        Match({"video": video_id}),
        Join(USERS, "owner", "_id", "owner"),
        Unwind("owner"),
        Project(COMMENT_FIELDS),
        Sort("createdAt", descending=True),
        Paginate(page, limit),
    )


def _positive_int(value, name: str, default: int) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        raise InvalidArgument(f"Invalid {name} number")
    if number < 1:
        raise InvalidArgument(f"Invalid {name} number")
    return number


def _page_window(page, limit, settings: Settings):
    page_number = _positive_int(page, "page", 1)
    page_size = min(_positive_int(limit, "limit", settings.DEFAULT_PAGE_SIZE), settings.MAX_PAGE_SIZE)
    if (page_number - 1) * page_size > MAX_SKIP:
        raise InvalidArgument("Invalid page number")
    return page_number, page_size


def _pagination(page: int, limit: int, total: int, total_key: str) -> dict:
    return {
        "currentPage": page,
        "limit": limit,
        total_key: total,
        "totalPages": math.ceil(total / limit) if total else 0,
    }


@dataclass(frozen=True)
class VideoListParams:
    page: int = 1
    limit: int = 10
    sort_by: str = "createdAt"
    descending: bool = True
    owner_id: Optional[ObjectId] = None
    query: Optional[str] = None

    @classmethod
    def parse(cls, page=None, limit=None, sort_by=None, sort_type=None, user_id=None, query=None,
              settings: Optional[Settings] = None) -> "VideoListParams":
        """Validate raw query-string values into listing parameters."""
        settings = settings or get_settings()
        page_number, page_size = _page_window(page, limit, settings)

        sort_by = sort_by or "createdAt"
        if sort_by not in SORT_FIELDS:
            raise InvalidArgument("Invalid sort field")

        sort_type = str(sort_type or "desc").strip().lower()
        if sort_type not in SORT_TYPES:
            raise InvalidArgument("Invalid sort type")

        owner_id = None
        if user_id:
            if not is_valid_id(user_id):
                raise InvalidArgument("Invalid userId")
            owner_id = ObjectId(user_id)

        query = query.strip() if query and query.strip() else None
        return cls(page_number, page_size, sort_by, SORT_TYPES[sort_type], owner_id, query)


class ReadModelBuilder:
    """Runs the read-model plans against the entity store."""

    def __init__(self, db: Database, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def video_detail(self, video_id, viewer_id: Optional[ObjectId] = None) -> dict:
        oid = objid(video_id, "videoId")
        video = self.db[VIDEOS].find_one({"_id": oid}, {"owner": 1, "isPublished": 1})
        if not video:
            raise NotFound("Video not found")
        if not video.get("isPublished", True) and video.get("owner") != viewer_id:
            raise NotFound("Video not found")
        detail = video_detail_plan(oid, viewer_id).execute_one(self.db)
        if detail is None:
            # owner document is gone
            raise NotFound("Video not found")
        return detail

    def channel_profile(self, username: Optional[str], viewer_id: Optional[ObjectId] = None) -> dict:
        if not username or not username.strip():
            raise InvalidArgument("username is missing")
        channel = channel_profile_plan(username, viewer_id).execute_one(self.db)
        if channel is None:
            raise NotFound("Channel does not exist")
        return channel

    def list_videos(self, params: VideoListParams) -> dict:
        plan = list_videos_plan(params, self.settings.SEARCH_INDEX)
        videos, total = plan.execute_page(self.db)
        return {
            "videos": videos,
            "pagination": _pagination(params.page, params.limit, total, "totalVideos"),
        }

    def videos_by_user(self, username: Optional[str], viewer_id: Optional[ObjectId] = None) -> list:
        if not username or not username.strip():
            raise InvalidArgument("Username is required")
        user = self.db[USERS].find_one({"username": username.strip().lower()}, {"_id": 1})
        if not user:
            raise NotFound("User not found")
        return videos_by_user_plan(user["_id"], viewer_id).execute(self.db)

    def video_comments(self, video_id, page=None, limit=None, viewer_id: Optional[ObjectId] = None) -> dict:
        oid = objid(video_id, "videoId")
        video = self.db[VIDEOS].find_one({"_id": oid}, {"owner": 1, "isPublished": 1})
        if not video or (not video.get("isPublished", True) and video.get("owner") != viewer_id):
            raise NotFound("Video not found")
        page_number, page_size = _page_window(page, limit, self.settings)
        comments, total = comments_plan(oid, page_number, page_size).execute_page(self.db)
        return {"comments": comments, "pagination": _pagination(page_number, page_size, total, "totalComments")}

    def watch_history(self, user_id: ObjectId) -> list:
        user = self.db[USERS].find_one({"_id": user_id}, {"watchHistory": 1})
        if not user:
            raise NotFound("User not found")
        history = user.get("watchHistory") or []
        if not history:
            return []
        videos = {v["_id"]: v for v in watch_history_plan(history, user_id).execute(self.db)}
        # most recent first
        return [videos[vid] for vid in reversed(history) if vid in videos]
