import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, Cookie, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from config import get_settings
from database import ensure_indexes, get_db, to_str_id
from dependencies import (get_current_user, get_optional_user, get_read_models, get_social_service,
                          get_user_service, get_video_service, user_id_of)
from errors import register_exception_handlers
from logging_config import configure_logging
from media import remove_staged, stage_upload
from read_models import ReadModelBuilder, VideoListParams
from social_service import SocialService
from user_service import UserService
from video_service import VideoService

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(get_db())
    except PyMongoError as e:
        logger.error("Could not ensure MongoDB indexes: %s", e)
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, debug=settings.DEBUG, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

# Serve locally stored media; the S3 backend hands out bucket URLs instead
if settings.MEDIA_BACKEND.lower() == "local":
    os.makedirs(settings.MEDIA_ROOT, exist_ok=True)
    app.mount(settings.MEDIA_BASE_URL, StaticFiles(directory=settings.MEDIA_ROOT), name="media")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# -------------------- Models --------------------
class LoginRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    oldPassword: Optional[str] = None
    newPassword: Optional[str] = None


class UpdateAccountRequest(BaseModel):
    fullName: Optional[str] = Field(None, max_length=100)
    username: Optional[str] = Field(None, min_length=3, max_length=30)
    email: Optional[EmailStr] = None


class CommentRequest(BaseModel):
    content: Optional[str] = None


# -------------------- Helpers --------------------
def respond(data, message: str = "Success", status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "data": to_str_id(data),
            "message": message,
            "success": status_code < 400,
        },
    )


def set_auth_cookies(response: JSONResponse, access_token: str, refresh_token: str) -> None:
    for name, value in (("accessToken", access_token), ("refreshToken", refresh_token)):
        response.set_cookie(name, value, httponly=True, secure=settings.COOKIE_SECURE, samesite="lax")


def clear_auth_cookies(response: JSONResponse) -> None:
    for name in ("accessToken", "refreshToken"):
        response.delete_cookie(name, httponly=True, secure=settings.COOKIE_SECURE, samesite="lax")


# -------------------- Basic Routes --------------------
@app.get("/")
def read_root():
    return respond({"name": settings.APP_NAME, "version": settings.VERSION}, "Video Sharing Backend is running")


@app.get("/health")
def health(db: Database = Depends(get_db)):
    info = {"backend": "running", "database": "disconnected"}
    try:
        db.command("ping")
        info["database"] = "connected"
    except PyMongoError as e:
        info["error"] = str(e)
    return respond(info, "Health check")


# -------------------- Users & Auth --------------------
@app.post("/users/register")
async def register(
    fullName: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    coverImage: Optional[UploadFile] = File(None),
    users: UserService = Depends(get_user_service),
):
    avatar_path = await stage_upload(avatar, settings.UPLOAD_TMP_DIR)
    cover_path = await stage_upload(coverImage, settings.UPLOAD_TMP_DIR)
    try:
        user = await run_in_threadpool(users.register, fullName, email, username, password,
                                       avatar_path, cover_path)
    finally:
        remove_staged([avatar_path, cover_path])
    return respond(user, "User registered successfully", 201)


@app.post("/users/login")
def login(payload: LoginRequest, users: UserService = Depends(get_user_service)):
    session = users.login(payload.password, username=payload.username, email=payload.email)
    response = respond(session, "User logged in successfully")
    set_auth_cookies(response, session["accessToken"], session["refreshToken"])
    return response


@app.post("/users/logout")
def logout(user: dict = Depends(get_current_user), users: UserService = Depends(get_user_service)):
    users.logout(user["_id"])
    response = respond({}, "User logged out")
    clear_auth_cookies(response)
    return response


@app.post("/users/refresh-token")
def refresh_token(
    payload: Optional[RefreshRequest] = Body(None),
    refresh_cookie: Optional[str] = Cookie(None, alias="refreshToken"),
    users: UserService = Depends(get_user_service),
):
    # an explicit body token wins over the cookie
    incoming = (payload.refreshToken if payload else None) or refresh_cookie
    tokens = users.refresh(incoming)
    response = respond(tokens, "Access token refreshed")
    set_auth_cookies(response, tokens["accessToken"], tokens["refreshToken"])
    return response


@app.post("/users/change-password")
def change_password(payload: ChangePasswordRequest, user: dict = Depends(get_current_user),
                    users: UserService = Depends(get_user_service)):
    users.change_password(user["_id"], payload.oldPassword, payload.newPassword)
    return respond({}, "Password changed successfully")


@app.get("/users/me")
def current_user(user: dict = Depends(get_current_user)):
    return respond(user, "User fetched successfully")


@app.patch("/users/me")
def update_account(payload: UpdateAccountRequest, user: dict = Depends(get_current_user),
                   users: UserService = Depends(get_user_service)):
    updated = users.update_account(user["_id"], full_name=payload.fullName,
                                   username=payload.username, email=payload.email)
    return respond(updated, "Account details updated successfully")


@app.patch("/users/me/avatar")
async def update_avatar(avatar: Optional[UploadFile] = File(None), user: dict = Depends(get_current_user),
                        users: UserService = Depends(get_user_service)):
    path = await stage_upload(avatar, settings.UPLOAD_TMP_DIR)
    try:
        updated = await run_in_threadpool(users.update_avatar, user["_id"], path)
    finally:
        remove_staged([path])
    return respond(updated, "Avatar image updated successfully")


@app.patch("/users/me/cover-image")
async def update_cover_image(coverImage: Optional[UploadFile] = File(None),
                             user: dict = Depends(get_current_user),
                             users: UserService = Depends(get_user_service)):
    path = await stage_upload(coverImage, settings.UPLOAD_TMP_DIR)
    try:
        updated = await run_in_threadpool(users.update_cover_image, user["_id"], path)
    finally:
        remove_staged([path])
    return respond(updated, "Cover image updated successfully")


@app.get("/users/channel/{username}")
def channel_profile(username: str, viewer: Optional[dict] = Depends(get_optional_user),
                    read_models: ReadModelBuilder = Depends(get_read_models)):
    channel = read_models.channel_profile(username, user_id_of(viewer))
    return respond(channel, "User channel fetched successfully")


@app.get("/users/watch-history")
def watch_history(user: dict = Depends(get_current_user),
                  read_models: ReadModelBuilder = Depends(get_read_models)):
    return respond(read_models.watch_history(user["_id"]), "Watch history fetched successfully")


# -------------------- Videos --------------------
@app.get("/videos")
def list_videos(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_type: Optional[str] = Query(None, alias="sortType"),
    user_id: Optional[str] = Query(None, alias="userId"),
    query: Optional[str] = None,
    read_models: ReadModelBuilder = Depends(get_read_models),
):
    params = VideoListParams.parse(page, limit, sort_by, sort_type, user_id, query, settings)
    return respond(read_models.list_videos(params), "Videos fetched successfully")


@app.post("/videos")
async def publish_video(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    videoFile: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user),
    videos: VideoService = Depends(get_video_service),
):
    video_path = await stage_upload(videoFile, settings.UPLOAD_TMP_DIR)
    thumbnail_path = await stage_upload(thumbnail, settings.UPLOAD_TMP_DIR)
    try:
        video = await run_in_threadpool(videos.publish, user["_id"], title, description,
                                        video_path, thumbnail_path)
    finally:
        remove_staged([video_path, thumbnail_path])
    return respond(video, "Video published successfully", 201)


@app.get("/videos/user/{username}")
def videos_by_user(username: str, viewer: Optional[dict] = Depends(get_optional_user),
                   read_models: ReadModelBuilder = Depends(get_read_models)):
    return respond(read_models.videos_by_user(username, user_id_of(viewer)), "Videos fetched successfully")


@app.get("/videos/{videoId}")
def get_video(videoId: str, viewer: Optional[dict] = Depends(get_optional_user),
              read_models: ReadModelBuilder = Depends(get_read_models),
              videos: VideoService = Depends(get_video_service)):
    viewer_id = user_id_of(viewer)
    video = read_models.video_detail(videoId, viewer_id)
    videos.record_view(video["_id"], viewer_id)
    video["views"] = video.get("views", 0) + 1
    return respond(video, "Video fetched successfully")


@app.patch("/videos/toggle/publish/{videoId}")
def toggle_publish(videoId: str, user: dict = Depends(get_current_user),
                   videos: VideoService = Depends(get_video_service)):
    return respond(videos.toggle_publish(videoId, user["_id"]), "Publish status toggled")


@app.patch("/videos/{videoId}")
async def update_video(
    videoId: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user),
    videos: VideoService = Depends(get_video_service),
):
    thumbnail_path = await stage_upload(thumbnail, settings.UPLOAD_TMP_DIR)
    try:
        video = await run_in_threadpool(videos.update, videoId, user["_id"], title, description, thumbnail_path)
    finally:
        remove_staged([thumbnail_path])
    return respond(video, "Video updated successfully")


@app.delete("/videos/{videoId}")
def delete_video(videoId: str, user: dict = Depends(get_current_user),
                 videos: VideoService = Depends(get_video_service)):
    return respond(videos.delete(videoId, user["_id"]), "Video deleted successfully")


# -------------------- Subscriptions, Likes & Comments --------------------
@app.post("/subscriptions/c/{channelId}")
def toggle_subscription(channelId: str, user: dict = Depends(get_current_user),
                        social: SocialService = Depends(get_social_service)):
    return respond(social.toggle_subscription(channelId, user["_id"]), "Subscription toggled")


@app.post("/likes/toggle/v/{videoId}")
def toggle_like(videoId: str, user: dict = Depends(get_current_user),
                social: SocialService = Depends(get_social_service)):
    return respond(social.toggle_like(videoId, user["_id"]), "Like toggled")


@app.get("/comments/{videoId}")
def list_comments(videoId: str, page: Optional[str] = None, limit: Optional[str] = None,
                  viewer: Optional[dict] = Depends(get_optional_user),
                  read_models: ReadModelBuilder = Depends(get_read_models)):
    comments = read_models.video_comments(videoId, page, limit, user_id_of(viewer))
    return respond(comments, "Comments fetched successfully")


@app.post("/comments/{videoId}")
def add_comment(videoId: str, payload: CommentRequest, user: dict = Depends(get_current_user),
                social: SocialService = Depends(get_social_service)):
    return respond(social.add_comment(videoId, user["_id"], payload.content), "Comment added", 201)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
