# immobot/config.py
"""Environment-driven configuration.

Values come from the process environment, optionally seeded from a ``.env``
file. ``load_settings`` validates everything up front so a misconfigured bot
stops before it opens a browser.
"""
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional
from dotenv import load_dotenv
from .utils import ConfigError

load_dotenv()

DEFAULT_GREETING = "Sehr geehrte Damen und Herren"
DEFAULT_CUSTOM_MESSAGE = (
    "Ich bin auf der Suche nach einer Wohnung und würde mich über eine Besichtigung freuen."
)


@dataclass(frozen=True)
class Settings:
    search_url: str
    base_url: str = "https://www.immobilienscout24.de"
    is24_email: str = ""
    is24_password: str = ""
    database_url: str = ""
    data_dir: str = "data"
    logs_dir: str = "logs"

    email_host: str = "smtp.gmail.com"
    email_port: int = 587
    email_user: str = ""
    email_password: str = ""
    email_to: str = ""

    base_interval_minutes: int = 10
    random_offset_percent: int = 30
    night_mode_enabled: bool = True
    night_start_hour: int = 23
    night_end_hour: int = 7

    message_greeting: str = DEFAULT_GREETING
    message_custom: str = DEFAULT_CUSTOM_MESSAGE

    headless: bool = True
    skip_warmup: bool = False
    dry_run: bool = False
    idle_simulation: bool = True
    skip_detection_on_detail: bool = False

    captcha_timeout_minutes: int = 10
    captcha_poll_seconds: int = 3
    captcha_pause_minutes: int = 30
    pdf_retention_days: int = 30

    api_host: str = "127.0.0.1"
    api_port: int = 3001

    @property
    def pdf_dir(self):
        return os.path.join(self.data_dir, "pdfs")

    @property
    def screenshots_dir(self):
        return os.path.join(self.data_dir, "screenshots")

    @property
    def profile_dir(self):
        return os.path.join(self.data_dir, "browser-profile")

    @property
    def cookies_path(self):
        return os.path.join(self.data_dir, "cookies.json")

    @property
    def email_enabled(self):
        return bool(self.email_user and self.email_to)

    def with_overrides(self, **changes):
        return replace(self, **changes)


def _get(env, key, default=None, required=False):
    value = env.get(key)
    if value is None or value == "":
        if required:
            raise ConfigError(f"Environment variable {key} is required but not set")
        return default
    return value


def _get_int(env, key, default):
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"Environment variable {key} must be a number, got {value!r}")


def _get_bool(env, key, default):
    value = env.get(key)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("true", "1")


def normalize_database_url(url):
    # SQLAlchemy 2.x doesn't accept 'postgres://'
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env

    is24_email = _get(env, "IS24_EMAIL", required=True)
    is24_password = _get(env, "IS24_PASSWORD", required=True)
    search_url = _get(env, "IS24_SEARCH_URL", required=True)
    if "immobilienscout24.de" not in search_url:
        raise ConfigError("Invalid IS24_SEARCH_URL. Must be an ImmobilienScout24 URL.")

    data_dir = _get(env, "DATA_DIR", "data")
    database_url = _get(env, "DATABASE_URL") or "sqlite:///" + os.path.join(data_dir, "listings.db")

    settings = Settings(
        search_url=search_url,
        base_url=_get(env, "IS24_BASE_URL", "https://www.immobilienscout24.de").rstrip("/"),
        is24_email=is24_email.strip(),
        is24_password=is24_password,
        database_url=normalize_database_url(database_url),
        data_dir=data_dir,
        logs_dir=_get(env, "LOGS_DIR", "logs"),
        email_host=_get(env, "EMAIL_HOST", "smtp.gmail.com"),
        email_port=_get_int(env, "EMAIL_PORT", 587),
        email_user=_get(env, "EMAIL_USER", ""),
        email_password=_get(env, "EMAIL_PASSWORD", ""),
        email_to=_get(env, "EMAIL_TO", ""),
        base_interval_minutes=_get_int(env, "BASE_INTERVAL_MINUTES", 10),
        random_offset_percent=_get_int(env, "RANDOM_OFFSET_PERCENT", 30),
        night_mode_enabled=_get_bool(env, "NIGHT_MODE_ENABLED", True),
        night_start_hour=_get_int(env, "NIGHT_START_HOUR", 23),
        night_end_hour=_get_int(env, "NIGHT_END_HOUR", 7),
        message_greeting=_get(env, "MESSAGE_GREETING", DEFAULT_GREETING),
        message_custom=_get(env, "MESSAGE_CUSTOM", DEFAULT_CUSTOM_MESSAGE),
        headless=_get_bool(env, "HEADLESS", True),
        skip_warmup=_get_bool(env, "SKIP_WARMUP", False),
        dry_run=_get_bool(env, "DRY_RUN", False),
        idle_simulation=_get_bool(env, "IDLE_SIMULATION", True),
        skip_detection_on_detail=_get_bool(env, "SKIP_DETECTION_ON_DETAIL", False),
        captcha_timeout_minutes=_get_int(env, "CAPTCHA_TIMEOUT_MINUTES", 10),
        captcha_poll_seconds=_get_int(env, "CAPTCHA_POLL_SECONDS", 3),
        captcha_pause_minutes=_get_int(env, "CAPTCHA_PAUSE_MINUTES", 30),
        pdf_retention_days=_get_int(env, "PDF_RETENTION_DAYS", 30),
        api_host=_get(env, "API_HOST", "127.0.0.1"),
        api_port=_get_int(env, "API_PORT", 3001),
    )
    validate_settings(settings)
    return settings


def validate_settings(settings: Settings):
    if "@" not in settings.is24_email:
        raise ConfigError("IS24_EMAIL must be the account's e-mail address")
    for name in ("night_start_hour", "night_end_hour"):
        hour = getattr(settings, name)
        if not 0 <= hour <= 23:
            raise ConfigError(f"{name.upper()} must be between 0 and 23, got {hour}")
    if settings.base_interval_minutes < 1:
        raise ConfigError("BASE_INTERVAL_MINUTES must be at least 1")
    if not 0 <= settings.random_offset_percent <= 100:
        raise ConfigError("RANDOM_OFFSET_PERCENT must be between 0 and 100")
    if settings.captcha_poll_seconds < 1 or settings.captcha_timeout_minutes < 1:
        raise ConfigError("CAPTCHA_TIMEOUT_MINUTES and CAPTCHA_POLL_SECONDS must be positive")
