"""
Configuration management for the release sync engine.

Loads configuration from environment variables and provides
a centralized Config dataclass for all settings.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Centralized configuration from environment variables."""

    # Primary metadata provider (TMDB)
    tmdb_api_key: str
    tmdb_base_url: str = "https://api.themoviedb.org/3"

    # Precise-airtime provider (TVmaze)
    tvmaze_base_url: str = "https://api.tvmaze.com"

    # Personal-history provider (Trakt)
    trakt_base_url: str = "https://api.trakt.tv"
    trakt_client_id: str = ""
    trakt_access_token: str = ""

    # Database
    database_url: str = ""
    db_host: str = ""
    db_port: int = 3306
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""

    # Request pipeline
    max_concurrent_requests: int = 4
    min_request_interval: float = 0.25  # Seconds between dispatches, across all callers
    max_retries: int = 3
    rate_limit_wait: float = 10.0  # Used when a 429 carries no Retry-After
    server_error_wait: float = 2.0
    request_timeout: float = 30.0

    # Full sync
    sync_batch_size: int = 3
    cache_chunk_size: int = 100
    cache_chunk_retries: int = 3
    fallback_region: str = "US"
    show_progress: bool = False

    # Live calendar window
    live_season_count: int = 2
    live_window_months: int = 1

    # Paths
    project_dir: Path = field(default_factory=Path.cwd)
    log_dir: Path = field(default_factory=lambda: Path.cwd() / "logs")

    @classmethod
    def from_env(cls, env_path: Optional[str] = None) -> "Config":
        """
        Load configuration from environment variables.

        Args:
            env_path: Optional path to .env file. If not provided,
                     looks for .env in the current directory.

        Returns:
            Config instance with loaded values.

        Raises:
            ConfigurationError: If required environment variables are missing.
        """
        if env_path:
            load_dotenv(env_path)
        else:
            load_dotenv()

        tmdb_api_key = os.getenv("TMDB_API_KEY", "")
        if not tmdb_api_key:
            raise ConfigurationError("TMDB_API_KEY environment variable is required")

        project_dir = Path(os.getenv("PROJECT_DIR", Path.cwd()))
        log_dir = Path(os.getenv("LOG_DIR", project_dir / "logs"))

        try:
            return cls(
                tmdb_api_key=tmdb_api_key,
                tmdb_base_url=os.getenv("TMDB_BASE_URL", "https://api.themoviedb.org/3"),
                tvmaze_base_url=os.getenv("TVMAZE_BASE_URL", "https://api.tvmaze.com"),
                trakt_base_url=os.getenv("TRAKT_BASE_URL", "https://api.trakt.tv"),
                trakt_client_id=os.getenv("TRAKT_CLIENT_ID", ""),
                trakt_access_token=os.getenv("TRAKT_ACCESS_TOKEN", ""),
                database_url=os.getenv("DATABASE_URL", ""),
                db_host=os.getenv("SQL_HOST", ""),
                db_port=int(os.getenv("SQL_PORT", "3306")),
                db_user=os.getenv("SQL_USER", ""),
                db_password=os.getenv("SQL_PASS", ""),
                db_name=os.getenv("SQL_DB", ""),
                max_concurrent_requests=int(os.getenv("MAX_CONCURRENT_REQUESTS", "4")),
                min_request_interval=float(os.getenv("MIN_REQUEST_INTERVAL", "0.25")),
                max_retries=int(os.getenv("MAX_RETRIES", "3")),
                rate_limit_wait=float(os.getenv("RATE_LIMIT_WAIT", "10")),
                server_error_wait=float(os.getenv("SERVER_ERROR_WAIT", "2")),
                request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
                sync_batch_size=int(os.getenv("SYNC_BATCH_SIZE", "3")),
                cache_chunk_size=int(os.getenv("CACHE_CHUNK_SIZE", "100")),
                cache_chunk_retries=int(os.getenv("CACHE_CHUNK_RETRIES", "3")),
                fallback_region=os.getenv("FALLBACK_REGION", "US").upper(),
                show_progress=_env_bool("SHOW_PROGRESS", False),
                live_season_count=int(os.getenv("LIVE_SEASON_COUNT", "2")),
                live_window_months=int(os.getenv("LIVE_WINDOW_MONTHS", "1")),
                project_dir=project_dir,
                log_dir=log_dir,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    @property
    def history_enabled(self) -> bool:
        """The personal-history provider needs at least a client id."""
        return bool(self.trakt_client_id)

    def get_db_url(self) -> str:
        """Get SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        if self.db_host and self.db_user and self.db_name:
            return (
                f"mysql+pymysql://{self.db_user}:{self.db_password}"
                f"@{self.db_host}:{self.db_port}/{self.db_name}"
            )
        return f"sqlite:///{self.project_dir / 'release_calendar.db'}"

    def get_tmdb_headers(self) -> dict:
        """
        Get headers for TMDB requests.

        v4 read tokens are long JWTs sent as a bearer header; short v3 keys
        go in the query string instead (see get_tmdb_params).
        """
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.tmdb_uses_bearer:
            headers["Authorization"] = f"Bearer {self.tmdb_api_key}"
        return headers

    def get_tmdb_params(self) -> dict:
        """Get default query parameters for TMDB requests."""
        if self.tmdb_uses_bearer:
            return {}
        return {"api_key": self.tmdb_api_key}

    @property
    def tmdb_uses_bearer(self) -> bool:
        return len(self.tmdb_api_key) > 60

    def get_trakt_headers(self) -> dict:
        """Get headers for Trakt requests."""
        headers = {
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "trakt-api-key": self.trakt_client_id,
        }
        if self.trakt_access_token:
            headers["Authorization"] = f"Bearer {self.trakt_access_token}"
        return headers
