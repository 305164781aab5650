import re
from pathlib import Path
from typing import Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = Field(default="ForexSaarthi Trade Desk", validation_alias="PROJECT_NAME")
    environment: str = Field(default="dev", validation_alias="ENVIRONMENT")

    # Base URL of the trade-management API, e.g. "https://api.example.com".
    api_base_url: str = Field(default="http://localhost:5000", validation_alias="API_BASE_URL")
    # Optional path prefix appended to the base URL (e.g. "/api").
    api_prefix: str = Field(default="", validation_alias="API_PREFIX")
    request_timeout_seconds: float = Field(default=30.0, validation_alias="API_TIMEOUT_SECONDS")

    refresh_path: str = Field(default="/auth/refresh", validation_alias="REFRESH_PATH")
    company_header: str = Field(default="X-Company-Id", validation_alias="COMPANY_HEADER")
    request_id_header: str = Field(default="X-Request-ID", validation_alias="REQUEST_ID_HEADER")

    storage_key_prefix: str = Field(default="forexsaarthi", validation_alias="STORAGE_KEY_PREFIX")
    session_database_url: str = Field(
        default="sqlite+pysqlite:///./tradedesk-session.db",
        validation_alias="SESSION_DATABASE_URL",
    )

    # Share one in-flight refresh between requests that hit 401 concurrently.
    coalesce_refresh: bool = Field(default=True, validation_alias="COALESCE_REFRESH")
    # A 401 on the post-refresh retry is returned as-is unless this is set.
    logout_on_retry_unauthorized: bool = Field(
        default=False, validation_alias="LOGOUT_ON_RETRY_UNAUTHORIZED"
    )

    google_client_id: Optional[str] = Field(default=None, validation_alias="GOOGLE_CLIENT_ID")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator("api_base_url", mode="before")
    @classmethod
    def normalize_api_base_url(cls, v: str) -> str:
        s = str(v or "").strip().strip('"').strip("'")
        # httpx joins relative paths onto the base URL; a trailing slash would double up.
        while s.endswith("/"):
            s = s[:-1]
        return s

    @field_validator("api_prefix", "refresh_path", mode="before")
    @classmethod
    def normalize_path(cls, v: str) -> str:
        """Normalize path-like values coming from env/.env.

        On Windows Git Bash (MSYS), values like "/api" may appear as a Windows path
        (e.g. "C:/Program Files/Git/api"). Keep only the trailing "/..." portion.
        """
        if v is None:
            return ""
        s = str(v).strip()
        if not s:
            return ""

        m = re.match(r"^[A-Za-z]:/Program Files/Git(/.*)$", s.replace("\\", "/"))
        if m:
            s = m.group(1)

        if not s.startswith("/"):
            s = f"/{s}"
        return s.rstrip("/") or ""

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return str(v or "INFO").strip().upper()

    @field_validator("session_database_url", mode="before")
    @classmethod
    def normalize_session_database_url(cls, v: str) -> str:
        """Make SQLite relative paths stable across working directories.

        A relative URL like sqlite+pysqlite:///./tradedesk-session.db is resolved
        against the project root so the persisted session is found again no matter
        where the process is started from.
        """

        if v is None:
            return v

        s = str(v).strip()
        if not s.startswith("sqlite"):
            return s

        marker = ":///"
        i = s.find(marker)
        if i == -1:
            return s

        path_part = s[i + len(marker) :]
        if not path_part or path_part == ":memory:":
            return s

        if path_part.startswith("/") or re.match(r"^[A-Za-z]:/", path_part):
            return s

        if path_part.startswith("./") or path_part.startswith(".\\"):
            project_root = Path(__file__).resolve().parents[1]
            abs_path = (project_root / path_part[2:]).resolve().as_posix()
            return f"{s[: i + len(marker)]}{abs_path}"

        return s

    @field_validator("session_database_url")
    @classmethod
    def validate_session_database_url_for_environment(cls, v: str, info: ValidationInfo) -> str:
        env = str(info.data.get("environment", "dev") or "dev").strip().lower()
        if env in {"prod", "production"} and ":memory:" in v:
            raise ValueError("SESSION_DATABASE_URL must be durable in production")
        return v

    @property
    def api_root(self) -> str:
        return f"{self.api_base_url}{self.api_prefix}"

    def storage_key(self, name: str) -> str:
        return f"{self.storage_key_prefix}_{name}"


settings = Settings()
