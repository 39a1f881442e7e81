# tests/test_config.py
import os
import pytest
from immobot.config import load_settings, normalize_database_url, DEFAULT_GREETING
from immobot.utils import ConfigError

SEARCH = "https://www.immobilienscout24.de/Suche/de/berlin/berlin/wohnung-mieten"
ACCOUNT = {"IS24_EMAIL": "mieter@example.org", "IS24_PASSWORD": "geheim123"}


def test_defaults():
    s = load_settings({**ACCOUNT, "IS24_SEARCH_URL": SEARCH})
    assert s.base_interval_minutes == 10
    assert s.random_offset_percent == 30
    assert (s.night_start_hour, s.night_end_hour) == (23, 7)
    assert s.night_mode_enabled and s.headless and not s.dry_run
    assert s.message_greeting == DEFAULT_GREETING
    assert s.database_url == "sqlite:///" + os.path.join("data", "listings.db")
    assert not s.email_enabled


def test_search_url_is_required():
    with pytest.raises(ConfigError):
        load_settings(ACCOUNT)


def test_search_url_must_be_the_portal():
    with pytest.raises(ConfigError):
        load_settings({**ACCOUNT, "IS24_SEARCH_URL": "https://example.com/search"})


def test_overrides_from_env():
    s = load_settings({
        **ACCOUNT,
        "IS24_SEARCH_URL": SEARCH,
        "BASE_INTERVAL_MINUTES": "15",
        "NIGHT_MODE_ENABLED": "false",
        "DRY_RUN": "1",
        "HEADLESS": "False",
        "EMAIL_USER": "bot@example.com",
        "EMAIL_TO": "me@example.com",
        "DATA_DIR": "/var/lib/immobot",
    })
    assert s.base_interval_minutes == 15
    assert not s.night_mode_enabled
    assert s.dry_run and not s.headless
    assert s.email_enabled
    assert s.pdf_dir == os.path.join("/var/lib/immobot", "pdfs")


@pytest.mark.parametrize("key, value", [
    ("NIGHT_START_HOUR", "24"),
    ("NIGHT_END_HOUR", "-1"),
    ("BASE_INTERVAL_MINUTES", "0"),
    ("RANDOM_OFFSET_PERCENT", "150"),
    ("BASE_INTERVAL_MINUTES", "ten"),
])
def test_invalid_values(key, value):
    with pytest.raises(ConfigError):
        load_settings({**ACCOUNT, "IS24_SEARCH_URL": SEARCH, key: value})


def test_postgres_url_is_normalized():
    assert normalize_database_url("postgres://u:p@h/db") == "postgresql+psycopg2://u:p@h/db"
    assert normalize_database_url("sqlite:///x.db") == "sqlite:///x.db"


@pytest.mark.parametrize("missing", ["IS24_EMAIL", "IS24_PASSWORD"])
def test_each_credential_is_required(missing):
    env = {**ACCOUNT, "IS24_SEARCH_URL": SEARCH}
    del env[missing]
    with pytest.raises(ConfigError, match=missing):
        load_settings(env)


def test_email_must_be_an_address():
    with pytest.raises(ConfigError, match="IS24_EMAIL"):
        load_settings({"IS24_EMAIL": "mieter", "IS24_PASSWORD": "x", "IS24_SEARCH_URL": SEARCH})


def test_credentials_are_loaded():
    s = load_settings({"IS24_EMAIL": " mieter@example.org ", "IS24_PASSWORD": " pw ", "IS24_SEARCH_URL": SEARCH})
    assert s.is24_email == "mieter@example.org"
    assert s.is24_password == " pw "
