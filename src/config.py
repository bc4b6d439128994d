"""
Centralized configuration with environment variable overrides.

Business hours, resilience thresholds, session lifetimes and integration
endpoints are all configurable here. Nothing is hardcoded in the engine,
the validator or the dependency clients.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_int_tuple(env_var: str, default: str) -> tuple[int, ...]:
    """Parse a comma-separated list of integers, e.g. ``"15,30,45,60"``."""
    raw = os.getenv(env_var, default)
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer list for {env_var}: {raw!r}"
        ) from None


def _safe_weekdays(env_var: str, default: str) -> tuple[int, ...]:
    """Parse business days as weekday names or numbers (Monday=0)."""
    raw = os.getenv(env_var, default)
    days: list[int] = []
    for part in raw.split(","):
        token = part.strip().lower()
        if not token:
            continue
        if token.isdigit():
            days.append(int(token))
        elif token[:3] in [name[:3] for name in WEEKDAY_NAMES]:
            days.append([name[:3] for name in WEEKDAY_NAMES].index(token[:3]))
        else:
            raise ValueError(f"Invalid weekday in {env_var}: {token!r}")
    return tuple(days)


@dataclass(frozen=True)
class BusinessConfig:
    """Business identity and scheduling constraints."""

    name: str = os.getenv("BUSINESS_NAME", "Metalogics")
    contact_email: str = os.getenv("BUSINESS_CONTACT_EMAIL", "hello@metalogics.io")
    timezone: str = os.getenv("BUSINESS_TIMEZONE", "Europe/London")
    open_hour: int = _safe_int("BUSINESS_OPEN_HOUR", "9")
    close_hour: int = _safe_int("BUSINESS_CLOSE_HOUR", "18")
    business_days: tuple[int, ...] = _safe_weekdays("BUSINESS_DAYS", "mon,tue,wed,thu,fri")
    allowed_durations: tuple[int, ...] = _safe_int_tuple("ALLOWED_DURATIONS", "15,30,45,60")
    slot_interval_minutes: int = _safe_int("SLOT_INTERVAL_MINUTES", "30")
    default_hour: int = _safe_int("DEFAULT_MEETING_HOUR", "14")


@dataclass(frozen=True)
class DependencySettings:
    """Circuit breaker settings for a single external dependency."""

    failure_threshold: int
    cooldown_seconds: float


@dataclass(frozen=True)
class ResilienceConfig:
    """Per-dependency breaker thresholds and the per-call timeout."""

    extraction: DependencySettings = field(default_factory=lambda: DependencySettings(
        failure_threshold=_safe_int("EXTRACTION_FAILURE_THRESHOLD", "3"),
        cooldown_seconds=_safe_float("EXTRACTION_COOLDOWN_SECONDS", "30"),
    ))
    calendar: DependencySettings = field(default_factory=lambda: DependencySettings(
        failure_threshold=_safe_int("CALENDAR_FAILURE_THRESHOLD", "3"),
        cooldown_seconds=_safe_float("CALENDAR_COOLDOWN_SECONDS", "45"),
    ))
    crm: DependencySettings = field(default_factory=lambda: DependencySettings(
        failure_threshold=_safe_int("CRM_FAILURE_THRESHOLD", "5"),
        cooldown_seconds=_safe_float("CRM_COOLDOWN_SECONDS", "60"),
    ))
    call_timeout_seconds: float = _safe_float("EXTERNAL_API_TIMEOUT", "10")
    health_check_timeout_seconds: float = _safe_float("HEALTH_CHECK_TIMEOUT", "5")

    def for_dependency(self, name: str) -> DependencySettings:
        """Settings for a named dependency, defaulting to the extraction profile."""
        return getattr(self, name, self.extraction)


@dataclass(frozen=True)
class SessionConfig:
    """Conversation session lifetimes and retry limits."""

    ttl_seconds: float = _safe_float("SESSION_TTL_SECONDS", "3600")
    max_field_attempts: int = _safe_int("MAX_FIELD_ATTEMPTS", "3")


@dataclass(frozen=True)
class ModelConfig:
    """LLM settings for the extraction collaborator."""

    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    llm_temperature: float = _safe_float("LLM_TEMPERATURE", "0.0")
    api_key: str = os.getenv("OPENAI_API_KEY", "")


@dataclass(frozen=True)
class IntegrationConfig:
    """Calendar and CRM endpoints. Empty URLs select the in-memory clients."""

    calendar_webhook_url: str = os.getenv("CALENDAR_WEBHOOK_URL", "")
    calendar_api_token: str = os.getenv("CALENDAR_API_TOKEN", "")
    crm_webhook_url: str = os.getenv("CRM_WEBHOOK_URL", "")
    crm_api_token: str = os.getenv("CRM_API_TOKEN", "")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    integrations: IntegrationConfig = field(default_factory=IntegrationConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    biz = config.business
    if not 0 <= biz.open_hour < biz.close_hour <= 24:
        raise ValueError(
            "BUSINESS_OPEN_HOUR must be before BUSINESS_CLOSE_HOUR within 0-24, "
            f"got {biz.open_hour}-{biz.close_hour}"
        )
    if not biz.business_days or any(not 0 <= d <= 6 for d in biz.business_days):
        raise ValueError(f"BUSINESS_DAYS must name weekdays, got {biz.business_days}")
    if not biz.allowed_durations or any(d <= 0 for d in biz.allowed_durations):
        raise ValueError(
            f"ALLOWED_DURATIONS must be positive minutes, got {biz.allowed_durations}"
        )
    if biz.slot_interval_minutes < 1:
        raise ValueError(
            f"SLOT_INTERVAL_MINUTES must be >= 1, got {biz.slot_interval_minutes}"
        )
    if not 0 <= biz.default_hour <= 23:
        raise ValueError(f"DEFAULT_MEETING_HOUR must be 0-23, got {biz.default_hour}")

    for dep_name in ("extraction", "calendar", "crm"):
        dep = config.resilience.for_dependency(dep_name)
        label = dep_name.upper()
        if dep.failure_threshold < 1:
            raise ValueError(
                f"{label}_FAILURE_THRESHOLD must be >= 1, got {dep.failure_threshold}"
            )
        if dep.cooldown_seconds <= 0:
            raise ValueError(
                f"{label}_COOLDOWN_SECONDS must be > 0, got {dep.cooldown_seconds}"
            )
    if config.resilience.call_timeout_seconds <= 0:
        raise ValueError(
            f"EXTERNAL_API_TIMEOUT must be > 0, got {config.resilience.call_timeout_seconds}"
        )

    if config.session.ttl_seconds <= 0:
        raise ValueError(f"SESSION_TTL_SECONDS must be > 0, got {config.session.ttl_seconds}")
    if config.session.max_field_attempts < 1:
        raise ValueError(
            f"MAX_FIELD_ATTEMPTS must be >= 1, got {config.session.max_field_attempts}"
        )
    if not 0.0 <= config.model.llm_temperature <= 2.0:
        raise ValueError(
            f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {config.model.llm_temperature}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    from src.logging_context import SessionIdFilter

    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(session_id)s] [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SessionIdFilter) for f in handler.filters):
            handler.addFilter(SessionIdFilter())
    logger.info("Configuration loaded for '%s'", config.business.name)
    return config


# Singleton instance
settings = load_config()
