from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_origins(raw: Any) -> List[str]:
    """
    Normalize CORS allow origins from env.

    Supports:
      - list[str] (already parsed)
      - "*"
      - comma-separated string: "https://a.com, https://b.com"
    """
    if raw is None:
        return ["*"]

    if isinstance(raw, list):
        items = [str(x).strip() for x in raw]
        items = [x for x in items if x]
        return items or ["*"]

    s = str(raw).strip()
    if not s or s == "*":
        return ["*"]

    if "," in s:
        parts = [p.strip() for p in s.split(",")]
        parts = [p for p in parts if p]
        return parts or ["*"]

    return [s]


class Settings(BaseSettings):
    """
    Central app settings (API + scheduler).

    - Env var names are the public contract; field names are internal.
    - Values are normalized on load (log level, CORS, URLs, positive intervals).
    - resolved_database_url is the single DB URL source of truth.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # App identity
    env: str = Field(default="local", alias="APP_ENV")
    app_name: str = Field(default="zoweh-life", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server runtime (uvicorn)
    host: str = Field(default="127.0.0.1", alias="HOST")  # set 0.0.0.0 for LAN / container
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")

    # Preferred: a real SQLAlchemy URL (SQLite now, Postgres later)
    database_url: str = Field(default="", alias="DATABASE_URL")

    # Fallback when DATABASE_URL is not set
    db_path: str = Field(default="./data/zoweh.sqlite", alias="DB_PATH")

    # Notification delivery. Empty webhook URL -> reminders are only logged.
    notify_webhook_url: str = Field(default="", alias="NOTIFY_WEBHOOK_URL")
    notify_timeout_s: float = Field(default=10.0, alias="NOTIFY_TIMEOUT_S")

    # Follow-up policy
    reminder_lead_days: int = Field(default=1, alias="REMINDER_LEAD_DAYS")
    never_contacted_days: int = Field(default=30, alias="NEVER_CONTACTED_DAYS")
    new_member_contact_days: int = Field(default=14, alias="NEW_MEMBER_CONTACT_DAYS")
    followup_progression_days: int = Field(default=20, alias="FOLLOWUP_PROGRESSION_DAYS")
    scheduler_interval_s: int = Field(default=3600, alias="SCHEDULER_INTERVAL_S")

    # Optional: if you deploy publicly, set this so /health can report it
    public_api_base: str = Field(default="", alias="PUBLIC_API_BASE")

    # -------------------------
    # Validators / normalizers
    # -------------------------

    @field_validator("log_level", mode="before")
    @classmethod
    def _norm_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip().upper()
        return s or "INFO"

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _norm_cors_allow_origins(cls, v: Any) -> list[str]:
        return _split_origins(v)

    @field_validator("host", mode="before")
    @classmethod
    def _norm_host(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        return s or "127.0.0.1"

    @field_validator("public_api_base", "notify_webhook_url", mode="before")
    @classmethod
    def _norm_url(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip().rstrip("/")

    @field_validator("database_url", mode="before")
    @classmethod
    def _norm_database_url(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip()

    @field_validator("db_path", mode="before")
    @classmethod
    def _norm_db_path(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        return s or "./data/zoweh.sqlite"

    @field_validator(
        "reminder_lead_days",
        "never_contacted_days",
        "new_member_contact_days",
        "followup_progression_days",
        mode="after",
    )
    @classmethod
    def _non_negative_days(cls, v: int) -> int:
        if v < 0:
            raise ValueError("day counts must be >= 0")
        return v

    @field_validator("scheduler_interval_s", mode="after")
    @classmethod
    def _min_interval(cls, v: int) -> int:
        # Never spin faster than once a minute
        return max(int(v), 60)

    # -------------------------
    # Derived helpers
    # -------------------------

    @property
    def is_prod(self) -> bool:
        return str(self.env).strip().lower() in ("prod", "production")

    @property
    def resolved_database_url(self) -> str:
        """
        Priority:
        1) DATABASE_URL if provided
        2) Build sqlite:/// URL from DB_PATH

        DB_PATH may itself be a sqlite URL or a relative/absolute file path.
        """
        if self.database_url:
            return self.database_url

        path = (self.db_path or "").strip() or "./data/zoweh.sqlite"

        if path.startswith("sqlite:"):
            return path

        p = Path(path)

        if not p.is_absolute():
            if str(p).startswith("./"):
                return f"sqlite:///{p.as_posix()}"
            return f"sqlite:///./{p.as_posix()}"

        # Absolute path needs 4 slashes after scheme (sqlite:////abs/path)
        return f"sqlite:////{p.as_posix().lstrip('/')}"


settings = Settings()
