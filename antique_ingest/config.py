# antique_ingest/config.py
"""Runtime settings assembled from the environment (and an optional .env file).

`load_settings()` is called once by the entry points and the resulting
`Settings` value is passed down to every component.
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class ScraperSettings(BaseModel):
    base_url: str = "https://newyork.craigslist.org"
    search_path: str = "/d/search/ata"
    results_per_page: int = 120
    max_pages: int = 10
    user_agent: str = DEFAULT_USER_AGENT
    headless: bool = True
    concurrency: int = 5
    # one page start per `delay_between_pages` seconds
    delay_between_pages: float = 2.0
    timeout: float = 30.0
    thumbnail_token: str = "50x50c"
    full_size_token: str = "600x450"

    @property
    def search_url(self) -> str:
        return f"{self.base_url}{self.search_path}"


class ImageSettings(BaseModel):
    directory: str = os.path.join("data", "images")
    concurrency: int = 10
    interval_cap: Optional[int] = 20
    interval: Optional[float] = 10.0
    timeout: float = 30.0


class OpenAISettings(BaseModel):
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4-1106-preview"
    temperature: float = 0.2
    max_tokens: int = 500
    requests_per_minute: int = 3
    concurrent_requests: int = 1
    max_retries: int = 3
    retry_base_delay: float = 1.0
    timeout: float = 60.0


class DatabaseSettings(BaseModel):
    url: str = "sqlite:///" + os.path.join("data", "database.sqlite")
    pool_size: int = 5
    max_overflow: int = 10


class LoggingSettings(BaseModel):
    level: str = "INFO"
    to_file: bool = False
    directory: str = "logs"
    filename: str = "application.log"
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5


class Settings(BaseModel):
    scraper: ScraperSettings = ScraperSettings()
    images: ImageSettings = ImageSettings()
    openai: OpenAISettings = OpenAISettings()
    database: DatabaseSettings = DatabaseSettings()
    logging: LoggingSettings = LoggingSettings()


def _flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _pick(mapping):
    """Keep only the env values that were actually set."""
    return {k: v for k, v in mapping.items() if v is not None}


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(env_file)

    database_url = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_URL")
    # SQLAlchemy 2.x doesn't accept 'postgres://'
    if database_url and database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+psycopg2://", 1)

    scraper = ScraperSettings(
        headless=_flag("HEADLESS", True),
        **_pick({
            "base_url": os.getenv("CRAIGSLIST_BASE_URL"),
            "search_path": os.getenv("CRAIGSLIST_SEARCH_PATH"),
            "results_per_page": os.getenv("SCRAPE_RESULTS_PER_PAGE"),
            "max_pages": os.getenv("SCRAPE_MAX_PAGES"),
            "user_agent": os.getenv("USER_AGENT"),
            "concurrency": os.getenv("SCRAPE_CONCURRENCY"),
            "delay_between_pages": os.getenv("SCRAPE_DELAY_BETWEEN_PAGES"),
            "timeout": os.getenv("SCRAPE_TIMEOUT"),
        }),
    )
    images = ImageSettings(**_pick({
        "directory": os.getenv("IMAGE_DIR"),
        "concurrency": os.getenv("IMAGE_CONCURRENCY"),
        "interval_cap": os.getenv("IMAGE_INTERVAL_CAP"),
        "interval": os.getenv("IMAGE_INTERVAL"),
        "timeout": os.getenv("IMAGE_TIMEOUT"),
    }))
    openai = OpenAISettings(**_pick({
        "api_key": os.getenv("OPENAI_API_KEY"),
        "base_url": os.getenv("OPENAI_BASE_URL"),
        "model": os.getenv("OPENAI_MODEL"),
        "temperature": os.getenv("OPENAI_TEMPERATURE"),
        "max_tokens": os.getenv("OPENAI_MAX_TOKENS"),
        "requests_per_minute": os.getenv("OPENAI_REQUESTS_PER_MINUTE"),
        "concurrent_requests": os.getenv("OPENAI_CONCURRENT_REQUESTS"),
        "max_retries": os.getenv("OPENAI_MAX_RETRIES"),
        "timeout": os.getenv("OPENAI_TIMEOUT"),
    }))
    database = DatabaseSettings(**_pick({
        "url": database_url,
        "pool_size": os.getenv("DB_POOL_SIZE"),
        "max_overflow": os.getenv("DB_MAX_OVERFLOW"),
    }))
    logging_settings = LoggingSettings(
        to_file=_flag("LOG_TO_FILE", False),
        **_pick({
            "level": os.getenv("LOG_LEVEL"),
            "directory": os.getenv("LOG_DIR"),
            "filename": os.getenv("LOG_FILENAME"),
        }),
    )
    return Settings(
        scraper=scraper,
        images=images,
        openai=openai,
        database=database,
        logging=logging_settings,
    )
