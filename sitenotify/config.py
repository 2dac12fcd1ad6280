# sitenotify/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False
    app_base_url: str = "http://localhost:3000"  # Used for deep links in email bodies

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000

    # Web Push (VAPID)
    # Generate a key pair with scripts/generate_vapid_keys.py
    vapid_subject: str | None = None  # mailto: or https: URI identifying the sender
    vapid_public_key: str | None = None
    vapid_private_key: str | None = None
    push_timeout_seconds: float = 10.0
    push_ttl_seconds: int = 86400  # How long the push service keeps an undelivered message

    # Email fallback (SMTP)
    email_notifications_enabled: bool = True
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None  # Falls back to smtp_user
    smtp_starttls: bool = True
    smtp_timeout_seconds: float = 15.0
    email_subject_prefix: str = "[알림] "
    email_default_path: str = "/dashboard"

    # Dispatch
    dispatch_max_concurrency: int = 20  # Recipients processed in parallel per dispatch call
    dispatch_deadline_seconds: float | None = None  # Batch deadline; None = unbounded
    in_app_fallback_enabled: bool = True  # Log an in_app row when no channel is eligible

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def push_enabled(self) -> bool:
        """Check if VAPID signing keys are configured"""
        return bool(
            self.vapid_subject
            and self.vapid_public_key
            and self.vapid_private_key
        )

    @property
    def smtp_enabled(self) -> bool:
        """Check if SMTP delivery is configured"""
        return bool(
            self.email_notifications_enabled
            and self.smtp_host
            and (self.smtp_from or self.smtp_user)
        )

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("database_url or pghost", self.database_url or self.pghost),
            ("vapid_subject", self.vapid_subject),
            ("vapid_public_key", self.vapid_public_key),
            ("vapid_private_key", self.vapid_private_key),
        ]

        if self.email_notifications_enabled:
            required_fields.extend([
                ("smtp_host", self.smtp_host),
                ("smtp_from or smtp_user", self.smtp_from or self.smtp_user),
            ])

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    # --- Push ---
    if not s.push_enabled:
        warnings.append(
            "VAPID keys are not fully configured: push delivery is disabled, "
            "recipients fall back to email or in_app."
        )
    elif s.vapid_subject and not s.vapid_subject.startswith(("mailto:", "https://")):
        warnings.append("vapid_subject should be a mailto: or https: URI (push services may reject it).")

    # --- Email ---
    if s.email_notifications_enabled and not s.smtp_enabled:
        warnings.append("email_notifications_enabled=True but SMTP is not configured (email fallback disabled).")
    if s.smtp_enabled and s.smtp_user and not s.smtp_password:
        warnings.append("smtp_user is set without smtp_password (SMTP login will fail).")
    if s.smtp_enabled and not s.smtp_starttls and s.smtp_port != 465:
        warnings.append("smtp_starttls=False: credentials and message bodies travel in clear text.")

    # --- Dispatch ---
    if s.dispatch_max_concurrency < 1:
        warnings.append("dispatch_max_concurrency < 1, using 1.")
    if s.is_production and s.app_base_url.startswith("http://localhost"):
        warnings.append("prod: app_base_url points to localhost (email deep links will be broken).")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
validate_or_warn(settings)
