"""Command-line interface for wordpress-export."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from . import __version__
from .config import DEFAULT_USER_AGENT, Settings
from .export import run_export
from .report import ExportError, Reporter, StatusLine, configure_logging, flush_logging

logger = logging.getLogger(__name__)

PROG = "wordpress-export"

# argparse dest -> Settings field
_SETTINGS_ARGS = {
    "url": "site_url",
    "api": "api_url",
    "output": "output_dir",
    "prefix": "prefix",
    "log": "log_file",
    "assets": "uploads_path",
    "quiet": "quiet",
    "silent": "silent",
    "sample": "sample",
    "filter": "post_filter",
    "postfile": "post_filename",
    "frontmatter": "frontmatter_file",
    "cache": "cache_dir",
    "stale": "stale",
    "mirror": "mirror",
    "user_agent": "user_agent",
    "meta": "save_meta",
}


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser.

    Options left unset default to None so values from the environment apply.
    """
    p = argparse.ArgumentParser(
        prog=PROG,
        description="Export WordPress posts, with their images and documents, "
                    "to markdown files via the REST API.",
    )
    p.add_argument("url", nargs="?", default=None, help="URL of the WordPress site")
    p.add_argument("--api", default=None, help="Base URL of the WordPress API")
    p.add_argument("-o", "--output", type=Path, default=None,
                   help="Save results to this directory (default: ./output)")
    p.add_argument("--prefix", default=None, help="Strip this prefix off post paths")
    p.add_argument("--log", type=Path, default=None, help="Log progress to this file")
    p.add_argument("--assets", default=None,
                   help="Copy assets under this path (default: /wp-content/uploads/)")
    p.add_argument("-q", "--quiet", action="store_true", default=None,
                   help="Don't print progress")
    p.add_argument("--silent", action="store_true", default=None,
                   help="Don't print progress or warnings")
    p.add_argument("--sample", type=int, default=None, help="Only retrieve this many posts")
    p.add_argument("--filter", default=None,
                   help="Only retrieve posts with urls containing this regexp")
    p.add_argument("--postfile", default=None,
                   help="The filename for each post (default: index.md)")
    p.add_argument("--frontmatter", type=Path, default=None,
                   help="Read additional frontmatter from this file")
    p.add_argument("--cache", type=Path, default=None, help="Cache directory")
    p.add_argument("--stale", action="store_true", default=None,
                   help="Do not expire cached results")
    p.add_argument("--mirror", action="store_true", default=None, help="Mirror remote images")
    p.add_argument("--user-agent", default=None,
                   help=f"Override request user-agent (default: {DEFAULT_USER_AGENT})")
    p.add_argument("--meta", action="store_true", default=None,
                   help="Save tags, categories, authors and comments")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose (DEBUG) logging")
    p.add_argument("-V", "--version", action="version",
                   version=f"%(prog)s version {__version__}")
    return p


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment settings overridden by whatever was given on the command line."""
    overrides: Dict[str, Any] = {}
    for dest, name in _SETTINGS_ARGS.items():
        value = getattr(args, dest)
        if value is not None:
            overrides[name] = value
    return Settings(**overrides)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""
    args = build_parser().parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ValidationError as exc:
        logging.basicConfig(format="[%(levelname)s] %(message)s")
        logger.error("Invalid configuration: %s", exc)
        return 1

    quiet = settings.quiet or settings.silent
    status_line = StatusLine(enabled=not quiet)
    try:
        configure_logging(
            status_line,
            quiet=quiet,
            silent=settings.silent,
            verbose=args.verbose,
            log_file=settings.log_file,
        )
    except OSError as exc:
        logging.basicConfig(format="[%(levelname)s] %(message)s")
        logger.error("Failed to open log file %s: %s", settings.log_file, exc)
        return 1

    reporter = Reporter(status_line)
    try:
        run_export(settings, reporter=reporter)
    except ExportError as exc:
        logger.error("%s", exc)
        flush_logging()
        return 1

    flush_logging()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
