"""Configuration for wordpress-export using pydantic-settings.

All settings are driven by environment variables with the WPEXPORT_ prefix
and can be overridden from the command line.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64; rv:60.0) Gecko/20100101 Firefox/81.0"
)


class Settings(BaseSettings):
    """Export configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WPEXPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_url: str = ""
    site_url: Optional[str] = None

    output_dir: Path = Path("output")
    prefix: str = ""
    post_filename: str = "index.md"
    frontmatter_file: Optional[Path] = None
    template: str = "blog-post"

    uploads_path: str = "/wp-content/uploads/"
    mirror: bool = False

    sample: int = 0
    post_filter: str = ""
    page_size: int = 100
    save_meta: bool = False

    cache_dir: Optional[Path] = None
    stale: bool = False
    cache_max_age: float = 86400.0

    user_agent: str = DEFAULT_USER_AGENT
    timeout_total: float = 30.0

    quiet: bool = False
    silent: bool = False
    log_file: Optional[Path] = None

    @property
    def posts_limit(self) -> Optional[int]:
        """Upper bound on fetched posts, or None when unbounded."""
        return self.sample if self.sample > 0 else None

    def ensure_dirs(self) -> None:
        """Create output and cache directories if they don't exist."""
        for path in (self.output_dir, self.cache_dir):
            if path is None:
                continue
            path.mkdir(parents=True, exist_ok=True)
            logger.debug("Ensured directory: %s", path)


def get_settings(**overrides) -> Settings:
    """Load settings from environment, apply overrides, ensure directories exist."""
    s = Settings(**overrides)
    s.ensure_dirs()
    return s
