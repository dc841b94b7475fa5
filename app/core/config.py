import json

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str

    REDIS_URL: str = "redis://redis:6379/0"

    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    FRONTEND_URL: str = "http://localhost:5173"
    BACKEND_URL: str = "http://localhost:8000"

    BACKEND_CORS_ORIGINS: str = (
        '["http://localhost:5173","http://localhost:3000","http://localhost:3001"]'
    )

    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Certificates API"
    DEBUG: bool = False

    RATE_LIMIT_ENABLED: bool = True

    UPLOAD_DIR: str = "./uploads"

    # Cloudflare R2 storage (S3-compatible)
    R2_ACCOUNT_ID: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET_NAME: str = "certificates"
    R2_PUBLIC_URL: str = ""

    # Storage backend: "local" for development, "r2" for production
    STORAGE_BACKEND: str = "local"

    CERTIFICATE_CODE_PREFIX: str = "CERT"
    CERTIFICATE_CODE_MAX_ATTEMPTS: int = 5
    CERTIFICATE_STORAGE_FOLDER: str = "certificates"
    CERTIFICATE_ISSUER_NAME: str = "Learning Platform"
    CERTIFICATE_DEFAULT_TEMPLATE: str = "standard"
    CERTIFICATE_BATCH_WORKERS: int = 4  # Concurrent renders during bulk repair
    CERTIFICATE_RETRY_MAX_ATTEMPTS: int = 3
    CERTIFICATE_REMINDER_DAYS: int = 7

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def cors_origins(self) -> list[str]:
        if isinstance(self.BACKEND_CORS_ORIGINS, str):
            try:
                parsed: list[str] = json.loads(self.BACKEND_CORS_ORIGINS)
                return parsed
            except json.JSONDecodeError:
                return ["http://localhost:5173", "http://localhost:3000"]
        return self.BACKEND_CORS_ORIGINS

    @property
    def r2_endpoint_url(self) -> str:
        return f"https://{self.R2_ACCOUNT_ID}.r2.cloudflarestorage.com"


settings = Settings()
