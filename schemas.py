"""
Database Schemas for VideoTube

Each Pydantic model maps to a MongoDB collection and validates documents
before they are inserted. Field names are camelCase because documents are
projected straight onto the API responses.

Collections:
- User -> users
- Video -> videos
- Comment -> comments
- Subscription -> subscriptions
- Like -> likes
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Optional, List
from bson import ObjectId


class MediaRef(BaseModel):
    url: str
    publicId: str = Field(..., description="Media store identifier used for deletion")


class User(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    username: str = Field(..., min_length=3, max_length=30, description="Stored lower-cased")
    email: EmailStr
    fullName: str = Field(..., min_length=1, max_length=100)
    passwordHash: str = Field(..., description="Bcrypt hash")
    avatar: MediaRef
    coverImage: Optional[MediaRef] = None
    watchHistory: List[ObjectId] = Field(default_factory=list, description="Video ids, oldest first")


class Video(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    owner: ObjectId = Field(..., description="Owner user id")
    title: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1, max_length=5000)
    videoFile: MediaRef
    thumbnail: MediaRef
    duration: float = 0
    views: int = 0
    isPublished: bool = True


class Comment(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    video: ObjectId
    owner: ObjectId
    content: str = Field(..., min_length=1, max_length=1000)


class Subscription(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    subscriber: ObjectId = Field(..., description="The user who follows")
    channel: ObjectId = Field(..., description="The user being followed")


class Like(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    video: ObjectId
    likedBy: ObjectId
