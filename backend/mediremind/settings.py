from __future__ import annotations

import os
from dataclasses import dataclass


def _to_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _to_int(val: str | None, default: int) -> int:
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


@dataclass
class Settings:
    app_env: str = "prod"
    database_url: str = "sqlite:///./mediremind.db"

    jwt_secret: str = "dev-secret-change-me"
    jwt_ttl_seconds: int = 604800  # 7d
    pbkdf2_iters: int = 200000

    # verification codes
    code_ttl_seconds: int = 15 * 60
    code_max_attempts: int = 5

    # login throttling
    login_max_fails: int = 5
    login_lock_seconds: int = 30 * 60
    rate_limit_backend: str = "memory"  # memory|redis
    redis_url: str = "redis://localhost:6379/0"

    # mail
    mail_provider: str = "console"  # console|resend|smtp
    mail_from: str = "MediRemind <onboarding@resend.dev>"
    emails_enabled: bool = True
    resend_api_key: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_pass: str | None = None
    smtp_use_tls: bool = True

    log_level: str = "INFO"

    @property
    def debug_codes(self) -> bool:
        # codes are echoed back to the client only in dev
        return self.app_env == "dev"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            app_env=env.get("APP_ENV", cls.app_env).strip().lower(),
            database_url=env.get("DATABASE_URL", cls.database_url),
            jwt_secret=env.get("JWT_SECRET", cls.jwt_secret),
            jwt_ttl_seconds=_to_int(env.get("JWT_TTL_SECONDS"), cls.jwt_ttl_seconds),
            pbkdf2_iters=_to_int(env.get("PBKDF2_ITERS"), cls.pbkdf2_iters),
            code_ttl_seconds=_to_int(env.get("CODE_TTL_SECONDS"), cls.code_ttl_seconds),
            code_max_attempts=_to_int(env.get("CODE_MAX_ATTEMPTS"), cls.code_max_attempts),
            login_max_fails=_to_int(env.get("LOGIN_MAX_FAILS"), cls.login_max_fails),
            login_lock_seconds=_to_int(env.get("LOGIN_LOCK_SECONDS"), cls.login_lock_seconds),
            rate_limit_backend=env.get("RATE_LIMIT_BACKEND", cls.rate_limit_backend).strip().lower(),
            redis_url=env.get("REDIS_URL", cls.redis_url),
            mail_provider=env.get("MAIL_PROVIDER", cls.mail_provider).strip().lower(),
            mail_from=env.get("MAIL_FROM", cls.mail_from),
            emails_enabled=_to_bool(env.get("EMAILS_ENABLED"), True),
            resend_api_key=env.get("RESEND_API_KEY"),
            smtp_host=env.get("SMTP_HOST"),
            smtp_port=_to_int(env.get("SMTP_PORT"), cls.smtp_port),
            smtp_user=env.get("SMTP_USER"),
            smtp_pass=env.get("SMTP_PASS"),
            smtp_use_tls=_to_bool(env.get("SMTP_USE_TLS"), True),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
        )
