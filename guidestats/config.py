import logging
from typing import List

from pydantic_settings import BaseSettings

_logger = logging.getLogger(__name__)


# Stats-panel label (lower-cased, trimmed) -> record field. Labels that map to
# the same field are combined with max(). Anything not listed is ignored.
DEFAULT_PANEL_LABEL_MAP: dict[str, str] = {
    "reviews": "reviews",
    "ratings": "ratings",
    "photos": "photos",
    "edits": "edits",
    "answers": "questions",
    "reported incorrect": "facts",
    "facts checked": "facts",
    "places added": "places_added",
    "roads added": "roads_added",
    "lists published": "lists_published",
}


class Settings(BaseSettings):
    # App
    APP_NAME: str = "guidestats"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # Browser
    BROWSER_EXECUTABLE_PATH: str = ""  # explicit binary override
    BROWSER_CACHE_DIR: str = ""  # extra directory searched for a binary
    BROWSER_HEADLESS: bool = True
    BROWSER_IDLE_SHUTDOWN_SECONDS: float = 60.0

    # Scraping
    MAX_CONCURRENT_SCRAPES: int = 1
    PANEL_LABEL_MAP: dict[str, str] = dict(DEFAULT_PANEL_LABEL_MAP)

    # Cache
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 300  # 5 minutes

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    def model_post_init(self, __context) -> None:
        if self.MAX_CONCURRENT_SCRAPES < 1:
            _logger.warning(
                "MAX_CONCURRENT_SCRAPES=%s is invalid, falling back to 1",
                self.MAX_CONCURRENT_SCRAPES,
            )
            object.__setattr__(self, "MAX_CONCURRENT_SCRAPES", 1)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
