from functools import lru_cache
import json
from typing import Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

EMAIL_PROVIDERS = ("resend", "sendgrid", "smtp", "mock")


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def _bare_address(value: str) -> str:
    # "Portfolio <noreply@example.com>" -> "noreply@example.com"
    raw = (value or "").strip()
    if raw.endswith(">") and "<" in raw:
        return raw[raw.rindex("<") + 1 : -1].strip()
    return raw


def _is_valid_address(value: str) -> bool:
    try:
        validate_email(_bare_address(value), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_by_name=True,
    )

    environment: str = Field(default="development", validation_alias=AliasChoices("ENVIRONMENT", "APP_ENV"))
    log_level: str = "INFO"
    debug_logging: bool = Field(default=False, validation_alias=AliasChoices("DEBUG_LOGGING", "LOG_DEBUG"))
    log_json: Optional[bool] = None

    # Start despite configuration errors. Ignored in production.
    allow_invalid_config: bool = False

    docs_enabled: bool = True
    security_headers_enabled: bool = True

    turnstile_secret_key: str = ""
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    turnstile_timeout_seconds: float = 5.0
    enable_turnstile_mock: bool = False

    email_provider: str = "resend"
    email_fallback_provider: str = ""
    resend_api_key: str = ""
    sendgrid_api_key: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_timeout_seconds: float = 8.0
    email_max_retries: int = 3
    email_retry_base_delay_ms: int = 100
    email_from: str = Field(default="", validation_alias=AliasChoices("EMAIL_FROM", "CONTACT_EMAIL_FROM"))
    email_to: str = Field(default="", validation_alias=AliasChoices("EMAIL_TO", "CONTACT_EMAIL_TO"))

    rate_limit_max_requests: int = 5
    rate_limit_window_seconds: int = 3600
    rate_limit_sweep_interval_seconds: int = 300
    rate_limit_max_buckets: int = 50_000

    request_timeout_seconds: float = 60.0
    problem_type_base_url: str = "https://api.example.com/errors/"
    alert_window_seconds: int = 3600

    trusted_proxy_cidrs_raw: str = Field(
        default="",
        validation_alias=AliasChoices("TRUSTED_PROXY_CIDRS"),
    )
    cors_allow_origins_raw: str = Field(
        default="",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS"),
    )

    @field_validator("email_provider", "email_fallback_provider", "environment", mode="before")
    @classmethod
    def _normalize_name(cls, value):
        if value is None:
            return ""
        return str(value).strip().lower()

    @property
    def cors_allow_origins(self) -> list[str]:
        return _parse_list_value(self.cors_allow_origins_raw)

    @property
    def trusted_proxy_cidrs(self) -> list[str]:
        return _parse_list_value(self.trusted_proxy_cidrs_raw)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_json_logs(self) -> bool:
        if self.log_json is not None:
            return self.log_json
        return self.is_production

    @property
    def turnstile_mock_active(self) -> bool:
        return self.enable_turnstile_mock and not self.is_production

    @property
    def email_providers(self) -> list[str]:
        providers = [self.email_provider]
        if self.email_fallback_provider and self.email_fallback_provider != self.email_provider:
            providers.append(self.email_fallback_provider)
        return providers

    @property
    def worst_case_stage_seconds(self) -> float:
        """Upper bound for anti-spam plus every retried delivery attempt, backoff included."""
        retries = max(1, self.email_max_retries)
        base_delay = max(0, self.email_retry_base_delay_ms) / 1000.0
        backoff = base_delay * (2 ** (retries - 1) - 1)
        per_provider = retries * self.email_timeout_seconds + backoff
        return self.turnstile_timeout_seconds + len(self.email_providers) * per_provider

    def validate_required_config(self) -> list[str]:
        """Return a list of human-readable configuration errors (empty when valid)."""
        errors: list[str] = []

        if not self.turnstile_mock_active:
            if not self.turnstile_secret_key:
                errors.append("TURNSTILE_SECRET_KEY is required")
            elif not self.turnstile_secret_key.startswith("0x"):
                errors.append('TURNSTILE_SECRET_KEY must start with "0x"')

        for provider in self.email_providers:
            if provider not in EMAIL_PROVIDERS:
                errors.append(f"Unknown email provider: {provider!r}")
            elif provider == "resend":
                if not self.resend_api_key:
                    errors.append("RESEND_API_KEY is required")
                elif not self.resend_api_key.startswith("re_"):
                    errors.append('RESEND_API_KEY must start with "re_"')
            elif provider == "sendgrid":
                if not self.sendgrid_api_key:
                    errors.append("SENDGRID_API_KEY is required")
                elif not self.sendgrid_api_key.startswith("SG."):
                    errors.append('SENDGRID_API_KEY must start with "SG."')
            elif provider == "smtp":
                if not self.smtp_host:
                    errors.append("SMTP_HOST is required")
            elif provider == "mock" and self.is_production:
                errors.append("Mock email provider is not allowed in production")

        for name, value in (("EMAIL_FROM", self.email_from), ("EMAIL_TO", self.email_to)):
            if not value:
                errors.append(f"{name} is required")
            elif not _is_valid_address(value):
                errors.append(f"{name} must be a valid email address")

        if self.rate_limit_max_requests <= 0:
            errors.append("RATE_LIMIT_MAX_REQUESTS must be positive")
        if self.rate_limit_window_seconds <= 0:
            errors.append("RATE_LIMIT_WINDOW_SECONDS must be positive")
        if self.email_max_retries <= 0:
            errors.append("EMAIL_MAX_RETRIES must be positive")
        if self.request_timeout_seconds <= 0:
            errors.append("REQUEST_TIMEOUT_SECONDS must be positive")
        elif self.request_timeout_seconds < self.worst_case_stage_seconds:
            errors.append(
                "REQUEST_TIMEOUT_SECONDS must cover the worst-case stage time "
                f"({self.worst_case_stage_seconds:.1f}s)"
            )

        return errors


@lru_cache

def get_settings() -> Settings:
    return Settings()
