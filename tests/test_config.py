# tests/test_config.py
import logging
import os

import pytest
from pydantic import ValidationError

from antique_ingest.config import load_settings
from antique_ingest.utils import configure_logging, get_logger

ENV_VARS = [
    "DATABASE_URL", "POSTGRES_URL", "SCRAPE_MAX_PAGES", "HEADLESS", "OPENAI_API_KEY",
    "OPENAI_REQUESTS_PER_MINUTE", "IMAGE_DIR", "LOG_TO_FILE", "LOG_DIR", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = load_settings()
    assert settings.scraper.results_per_page == 120
    assert settings.scraper.max_pages == 10
    assert settings.scraper.headless is True
    assert settings.openai.requests_per_minute == 3
    assert settings.openai.concurrent_requests == 1
    assert settings.images.concurrency == 10
    assert settings.database.url.startswith("sqlite:///")


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("POSTGRES_URL", "postgres://user:pw@db:5432/antiques")
    monkeypatch.setenv("SCRAPE_MAX_PAGES", "3")
    monkeypatch.setenv("HEADLESS", "0")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("IMAGE_DIR", "/tmp/antique-images")

    settings = load_settings()

    assert settings.database.url == "postgresql+psycopg2://user:pw@db:5432/antiques"
    assert settings.scraper.max_pages == 3
    assert settings.scraper.headless is False
    assert settings.openai.api_key == "sk-test"
    assert settings.images.directory == "/tmp/antique-images"


def test_env_file(tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("OPENAI_REQUESTS_PER_MINUTE=7\n")
    try:
        assert load_settings(str(env_file)).openai.requests_per_minute == 7
    finally:
        # load_dotenv writes straight into os.environ
        os.environ.pop("OPENAI_REQUESTS_PER_MINUTE", None)


def test_bad_number_is_rejected(monkeypatch):
    monkeypatch.setenv("SCRAPE_MAX_PAGES", "lots")
    with pytest.raises(ValidationError):
        load_settings()


def test_file_logging(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_TO_FILE", "true")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    settings = load_settings()

    root = configure_logging(settings.logging)
    try:
        get_logger("test").info("hello from the pipeline")
        for handler in root.handlers:
            handler.flush()
        assert "hello from the pipeline" in (tmp_path / "logs" / "application.log").read_text()
    finally:
        for handler in list(root.handlers):
            if isinstance(handler, logging.FileHandler):
                root.removeHandler(handler)
                handler.close()
    assert get_logger("x").name == "antique-ingest.x"
