"""
Media Store

Stores uploaded images and videos and hands back a public URL plus an opaque
public id used to delete the asset later. Two backends:
- LocalMediaStore: files under MEDIA_ROOT, served by the static mount
- S3MediaStore: objects in an S3 (or S3-compatible) bucket

Uploads arrive as temporary files staged from the multipart request; the
staging helpers live here as well.
"""

import json
import logging
import mimetypes
import os
import shutil
import subprocess
import tempfile
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import UploadFile

from config import Settings

logger = logging.getLogger(__name__)

IMAGE = "image"
VIDEO = "video"


class MediaStoreError(Exception):
    pass


@dataclass
class MediaAsset:
    url: str
    public_id: str
    duration: Optional[float] = None

    def as_ref(self) -> dict:
        return {"url": self.url, "publicId": self.public_id}


def probe_duration(path: str, ffprobe_path: str = "ffprobe") -> Optional[float]:
    """Read a media file's duration in seconds, None when ffprobe can't tell."""
    cmd = [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=60, check=True)
        probe_data = json.loads(result.stdout.decode() or "{}")
        return float(probe_data["format"]["duration"])
    except (OSError, subprocess.SubprocessError, ValueError, KeyError) as e:
        logger.debug("Could not probe duration of %s: %s", path, e)
        return None


class MediaStore:
    """Interface shared by the storage backends"""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    def upload(self, local_path: str, resource_type: str = IMAGE) -> MediaAsset:
        if not local_path or not os.path.isfile(local_path):
            raise MediaStoreError(f"Upload source not found: {local_path}")
        public_id = self._object_key(local_path, resource_type)
        url = self._store(local_path, public_id)
        duration = probe_duration(local_path, self.ffprobe_path) if resource_type == VIDEO else None
        logger.info("Uploaded %s asset %s", resource_type, public_id)
        return MediaAsset(url=url, public_id=public_id, duration=duration)

    def destroy(self, public_id: str, resource_type: str = IMAGE) -> None:
        raise NotImplementedError

    def _store(self, local_path: str, public_id: str) -> str:
        raise NotImplementedError

    @staticmethod
    def _object_key(local_path: str, resource_type: str) -> str:
        ext = os.path.splitext(local_path)[1].lower()
        return f"{resource_type}s/{uuid.uuid4().hex}{ext}"


class LocalMediaStore(MediaStore):
    def __init__(self, root: str, base_url: str = "/static", ffprobe_path: str = "ffprobe"):
        super().__init__(ffprobe_path)
        self.root = os.path.abspath(root)
        self.base_url = base_url.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, public_id: str) -> str:
        path = os.path.abspath(os.path.join(self.root, public_id))
        if os.path.commonpath([path, self.root]) != self.root:
            raise MediaStoreError(f"Invalid public id: {public_id}")
        return path

    def _store(self, local_path: str, public_id: str) -> str:
        target = self.path_for(public_id)
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            shutil.copyfile(local_path, target)
        except OSError as e:
            raise MediaStoreError(f"Failed to store {public_id}: {e}") from e
        return f"{self.base_url}/{public_id}"

    def destroy(self, public_id: str, resource_type: str = IMAGE) -> None:
        target = self.path_for(public_id)
        try:
            os.remove(target)
        except FileNotFoundError:
            logger.debug("Media %s already gone", public_id)
        except OSError as e:
            raise MediaStoreError(f"Failed to delete {public_id}: {e}") from e


class S3MediaStore(MediaStore):
    def __init__(self, settings: Settings, client=None):
        super().__init__(settings.FFPROBE_PATH)
        self.bucket_name = settings.S3_BUCKET_NAME
        self.region = settings.S3_REGION
        self.endpoint_url = settings.S3_ENDPOINT_URL or None
        self.public_url = settings.S3_PUBLIC_URL.rstrip("/")
        self.s3_client = client or self._init_s3_client(settings)

    def _init_s3_client(self, settings: Settings):
        config = Config(
            region_name=self.region,
            retries={'max_attempts': 3, 'mode': 'adaptive'},
            max_pool_connections=50,
        )
        if settings.S3_ACCESS_KEY_ID and settings.S3_SECRET_ACCESS_KEY:
            return boto3.client(
                's3',
                aws_access_key_id=settings.S3_ACCESS_KEY_ID,
                aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
                endpoint_url=self.endpoint_url,
                config=config,
            )
        # Default credential chain (IAM roles, environment, etc.)
        return boto3.client('s3', endpoint_url=self.endpoint_url, config=config)

    def url_for(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{key}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"

    def _store(self, local_path: str, public_id: str) -> str:
        content_type = mimetypes.guess_type(local_path)[0] or "application/octet-stream"
        try:
            self.s3_client.upload_file(
                local_path, self.bucket_name, public_id,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as e:
            raise MediaStoreError(f"S3 upload failed for {public_id}: {e}") from e
        return self.url_for(public_id)

    def destroy(self, public_id: str, resource_type: str = IMAGE) -> None:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=public_id)
        except (BotoCoreError, ClientError) as e:
            raise MediaStoreError(f"S3 delete failed for {public_id}: {e}") from e


def build_media_store(settings: Settings) -> MediaStore:
    backend = settings.MEDIA_BACKEND.lower()
    if backend == "s3":
        return S3MediaStore(settings)
    if backend == "local":
        return LocalMediaStore(settings.MEDIA_ROOT, settings.MEDIA_BASE_URL, settings.FFPROBE_PATH)
    raise ValueError(f"Unknown MEDIA_BACKEND: {settings.MEDIA_BACKEND}")


def discard_media(store: MediaStore, media: Optional[dict], resource_type: str = IMAGE) -> bool:
    """Best-effort delete of a stored asset; failures are logged, never raised."""
    public_id = (media or {}).get("publicId")
    if not public_id:
        return False
    try:
        store.destroy(public_id, resource_type)
        return True
    except MediaStoreError as e:
        logger.warning("Leaving orphaned %s asset %s: %s", resource_type, public_id, e)
        return False


async def stage_upload(upload: Optional[UploadFile], directory: str = "") -> Optional[str]:
    """Write a multipart upload to a temporary file and return its path."""
    if upload is None or not upload.filename:
        return None
    directory = directory or tempfile.gettempdir()
    os.makedirs(directory, exist_ok=True)
    ext = os.path.splitext(upload.filename)[1]
    path = os.path.join(directory, f"{uuid.uuid4().hex}{ext}")
    with open(path, "wb") as f:
        f.write(await upload.read())
    return path


def remove_staged(paths: Iterable[Optional[str]]) -> None:
    for path in paths:
        if not path:
            continue
        try:
            os.remove(path)
        except FileNotFoundError:
            pass