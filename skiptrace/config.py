"""Centralised settings for the skip-trace session core.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (one level up from the package)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / local cache
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("SKIPTRACE_WORKSPACE", Path.home() / ".skiptrace_data")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the local cache SQLite file."""
        return self.workspace_dir / "cache.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------
    anonymous_daily_credits: int = field(
        default_factory=lambda: int(os.environ.get("ANONYMOUS_DAILY_CREDITS", "100"))
    )

    # ------------------------------------------------------------------
    # Upstream skip-trace API
    # ------------------------------------------------------------------
    rapidapi_host: str = field(
        default_factory=lambda: os.environ.get(
            "RAPIDAPI_HOST", "skip-tracing-working-api.p.rapidapi.com"
        )
    )
    rapidapi_key: str = field(
        default_factory=lambda: os.environ.get("RAPIDAPI_KEY", "")
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "30.0"))
    )

    # ------------------------------------------------------------------
    # Remote (durable) session store
    # ------------------------------------------------------------------
    remote_store_url: str = field(
        default_factory=lambda: os.environ.get("REMOTE_STORE_URL", "")
    )
    remote_store_key: str = field(
        default_factory=lambda: os.environ.get("REMOTE_STORE_KEY", "")
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str | None = None) -> None:
    """Apply a basic log format at ``settings.log_level`` (or *level*)."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Module-level singleton, import this everywhere:
#   from skiptrace.config import settings
settings = Settings()
