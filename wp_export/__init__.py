"""wordpress-export: mirror WordPress posts to markdown directories via the REST API."""

__version__ = "0.2.0"

from .config import Settings, get_settings
from .export import post_directory, run_export, save_post
from .ingest_http import Fetcher, FetchError
from .report import ExportError, Reporter
from .rewrite import AssetRewriter, rewrite_content
from .wp_api import discover_api, fetch_collection

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "Fetcher",
    "FetchError",
    "ExportError",
    "Reporter",
    "AssetRewriter",
    "rewrite_content",
    "discover_api",
    "fetch_collection",
    "post_directory",
    "run_export",
    "save_post",
]
