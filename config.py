from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "VideoTube API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    CORS_ORIGINS: str = "*"  # Comma-separated origins

    # Database settings
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "videotube"
    DATABASE_TIMEOUT_MS: int = 5000

    # Token settings
    ACCESS_TOKEN_SECRET: str = "access-secret-change-in-production"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_SECRET: str = "refresh-secret-change-in-production"
    REFRESH_TOKEN_EXPIRE_DAYS: int = 10
    JWT_ALGORITHM: str = "HS256"
    COOKIE_SECURE: bool = True

    # Security settings
    BCRYPT_ROUNDS: int = 12

    # Media storage settings
    MEDIA_BACKEND: str = "local"  # "local" or "s3"
    MEDIA_ROOT: str = "uploads"
    MEDIA_BASE_URL: str = "/static"
    UPLOAD_TMP_DIR: str = ""  # System temp dir when empty
    FFPROBE_PATH: str = "ffprobe"

    # S3 settings
    S3_BUCKET_NAME: str = "videotube-media"
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_ENDPOINT_URL: str = ""  # For S3-compatible services
    S3_PUBLIC_URL: str = ""  # CDN or bucket URL prefix

    # Listing settings
    SEARCH_INDEX: str = ""  # Atlas Search index name, regex search when empty
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "text" or "json"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self):
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings():
    return Settings()
