from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getenv_list(name: str) -> frozenset[str]:
    raw = _getenv(name, "")
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def _getenv_float(name: str, default: str) -> float:
    raw = _getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None


def _getenv_int(name: str, default: str) -> int:
    raw = _getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None

    # Admin allow-lists (see AccessResolver signal sources)
    admin_external_ids: frozenset[str]
    admin_principal_ids: frozenset[str]

    # Token validation gateway
    identity_primary_url: str
    identity_secondary_url: str
    identity_timeout_seconds: float
    min_token_length: int

    # Group membership provider
    discord_api_url: str
    discord_guild_id: str
    discord_bot_token: str
    avatar_cdn_url: str

    auto_complete_threshold: float
    readiness_deadline_seconds: float
    max_sign_in_attempts: int

    # Session tokens
    session_key_path: str | None
    session_ttl_minutes: int

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    port = _getenv_int("PORT", "8000")
    log_json = _getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None

    timeout = _getenv_float("IDENTITY_TIMEOUT_SECONDS", "10")
    if timeout <= 0:
        raise ValueError(f"IDENTITY_TIMEOUT_SECONDS must be > 0 (got {timeout!r})")

    threshold = _getenv_float("AUTO_COMPLETE_THRESHOLD", "0.9")
    if not 0 < threshold <= 1:
        raise ValueError(
            f"AUTO_COMPLETE_THRESHOLD must be in (0, 1] (got {threshold!r})"
        )

    deadline = _getenv_float("READINESS_DEADLINE_SECONDS", "5")
    if deadline <= 0:
        raise ValueError(f"READINESS_DEADLINE_SECONDS must be > 0 (got {deadline!r})")

    min_token_length = _getenv_int("MIN_TOKEN_LENGTH", "20")
    max_attempts = _getenv_int("MAX_SIGN_IN_ATTEMPTS", "3")
    if max_attempts < 1:
        raise ValueError(f"MAX_SIGN_IN_ATTEMPTS must be >= 1 (got {max_attempts!r})")

    session_ttl = _getenv_int("SESSION_TTL_MINUTES", "60")
    if session_ttl < 1:
        raise ValueError(f"SESSION_TTL_MINUTES must be >= 1 (got {session_ttl!r})")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json,
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        admin_external_ids=_getenv_list("ADMIN_EXTERNAL_IDS"),
        admin_principal_ids=_getenv_list("ADMIN_PRINCIPAL_IDS"),
        identity_primary_url=_getenv(
            "IDENTITY_PRIMARY_URL", "https://auth.example.com/api/user"
        ),
        identity_secondary_url=_getenv(
            "IDENTITY_SECONDARY_URL", "https://auth.example.com/api/v1/user"
        ),
        identity_timeout_seconds=timeout,
        min_token_length=min_token_length,
        discord_api_url=_getenv(
            "DISCORD_API_URL", "https://discord.com/api/v10"
        ).rstrip("/"),
        discord_guild_id=_getenv("DISCORD_GUILD_ID", "428530875085619200"),
        discord_bot_token=_getenv("DISCORD_BOT_TOKEN", ""),
        avatar_cdn_url=_getenv("AVATAR_CDN_URL", "https://cdn.discordapp.com").rstrip(
            "/"
        ),
        auto_complete_threshold=threshold,
        readiness_deadline_seconds=deadline,
        max_sign_in_attempts=max_attempts,
        session_key_path=_getenv("SESSION_KEY_PATH", "") or None,
        session_ttl_minutes=session_ttl,
    )


# Read once at import.  Tests swap fields with dataclasses.replace.
SETTINGS = load_settings()
