"""Export pipeline: fetch site records, then write one directory per post."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import httpx
import yaml

from .config import Settings
from .ingest_http import Fetcher
from .models import Comment, ErrorReport, FrontMatter, Post
from .report import ExportError, Reporter
from .rewrite import rewrite_content
from .wp_api import (
    discover_api,
    dump_by_id,
    dump_comments,
    enrich_post,
    get_categories,
    get_comments,
    get_posts,
    get_tags,
    get_users,
    normalize_site_url,
    with_trailing_slash,
)

logger = logging.getLogger(__name__)

COMMENTS_NAME = "comments.json"
ERRORS_NAME = "errors.json"


@dataclass
class ExportContext:
    """Everything one run threads through the per-post pipeline."""

    settings: Settings
    fetcher: Fetcher
    reporter: Reporter
    frontmatter: str = ""
    comments: Dict[int, List[Comment]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# I/O helpers
# ---------------------------------------------------------------------------

def _write_json_atomic(path: Path, payload: Any) -> None:
    """Write pretty JSON atomically via tmp-file rename.

    Non-ASCII and HTML characters are written as-is.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)
    except OSError as exc:
        raise ExportError(f"Failed to create {path}: {exc}") from exc


def write_meta(output_dir: Path, name: str, payload: Any) -> Path:
    """Save one collection as ``<output_dir>/<name>.json``."""
    path = output_dir / f"{name}.json"
    _write_json_atomic(path, payload)
    logger.debug("Wrote %s", path)
    return path


def read_frontmatter(path: Optional[Path]) -> str:
    """Load the extra frontmatter block, stripped and newline-terminated."""
    if path is None:
        return ""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ExportError(f"Failed to read from '{path}': {exc}") from exc
    return text.strip() + "\n"


def compile_filter(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ExportError(f"Failed to compile filter: {exc}") from exc


# ---------------------------------------------------------------------------
# Post serialization
# ---------------------------------------------------------------------------

def post_directory(link: str, prefix: str = "") -> List[str]:
    """Path segments of a post's permalink, after stripping ``prefix``.

    ``prefix`` may be a full URL prefix (``https://example.com/blog``) or a
    path prefix (``/blog``).
    """
    if prefix and link.startswith(prefix):
        path = link[len(prefix):]
    else:
        try:
            path = urlsplit(link).path
        except ValueError as exc:
            raise ExportError(f"failed to parse url of post '{link}': {exc}") from exc
        if prefix and path.startswith(prefix):
            path = path[len(prefix):]
    return [segment for segment in path.split("/") if segment]


def build_frontmatter(post: Post, template: str = "blog-post") -> FrontMatter:
    return FrontMatter(
        template=template,
        title=post.title.rendered,
        date=post.date_gmt,
        excerpt=post.excerpt.rendered,
        author=post.author_name,
        categories=post.category_names,
        tags=post.tag_names,
    )


def compose_post(front: FrontMatter, extra_frontmatter: str, body: str) -> str:
    """Frontmatter block, extra frontmatter verbatim, then the body unchanged."""
    header = yaml.safe_dump(
        front.model_dump(),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return "---\n" + header + extra_frontmatter + "---\n" + body


def _check_date(post: Post, reporter: Reporter) -> None:
    try:
        datetime.fromisoformat(post.date_gmt)
    except ValueError as exc:
        reporter.warn("Failed to parse date for %s '%s': %s", post.link, post.date_gmt, exc)


def save_post(post: Post, ctx: ExportContext) -> Path:
    """Write one post (and its assets and comments) under the output directory.

    Returns:
        Path of the written post file.
    """
    s = ctx.settings
    ctx.reporter.current_page = post.link

    source = urlsplit(post.link)
    if not source.scheme or not source.netloc:
        raise ExportError(f"Post URL '{post.link}' isn't absolute")
    ctx.reporter.status("Processing %s", source.path)
    _check_date(post, ctx.reporter)

    output_dir = s.output_dir.joinpath(*post_directory(post.link, s.prefix))
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExportError(f"Failed to create directory {output_dir}: {exc}") from exc

    body = rewrite_content(
        post.content.rendered,
        settings=s,
        fetcher=ctx.fetcher,
        reporter=ctx.reporter,
        source_url=post.link,
        output_dir=output_dir,
    )
    markdown = compose_post(build_frontmatter(post, s.template), ctx.frontmatter, body)

    output_path = output_dir / s.post_filename
    try:
        output_path.write_text(markdown, encoding="utf-8")
    except OSError as exc:
        raise ExportError(f"Failed to create file {output_path}: {exc}") from exc
    logger.debug("Saved %s", output_path)

    comments = ctx.comments.get(post.id)
    if comments:
        _write_json_atomic(
            output_dir / COMMENTS_NAME,
            [c.model_dump(mode="json", exclude_none=True) for c in comments],
        )
    return output_path


# ---------------------------------------------------------------------------
# Pipeline entry point
# ---------------------------------------------------------------------------

def resolve_api_url(settings: Settings, fetcher: Fetcher) -> str:
    """Use the configured API URL, or discover it from the site URL."""
    api_url = settings.api_url
    if not api_url and settings.site_url:
        api_url = discover_api(fetcher, normalize_site_url(settings.site_url))
    if not api_url:
        raise ExportError(
            "I couldn't find the API of the site to export, "
            "try with 'wordpress-export <url>' or with --api"
        )
    return with_trailing_slash(api_url)


def run_export(
    settings: Settings,
    *,
    reporter: Optional[Reporter] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> ErrorReport:
    """Run the full export: fetch records, write every matching post.

    Args:
        settings: Export settings.
        reporter: Progress/error state; a silent one is created if omitted.
        transport: Optional httpx transport, used by tests.

    Returns:
        The accumulated recoverable errors of the run.

    Raises:
        ExportError: On any unrecoverable condition.
    """
    reporter = reporter or Reporter()
    try:
        settings.ensure_dirs()
    except OSError as exc:
        raise ExportError(f"Failed to create output directories: {exc}") from exc

    frontmatter = read_frontmatter(settings.frontmatter_file)
    post_filter = compile_filter(settings.post_filter)

    with Fetcher(settings, reporter=reporter, transport=transport) as fetcher:
        api_url = resolve_api_url(settings, fetcher)
        logger.info("Using API at %s", api_url)

        page_size = settings.page_size
        users = get_users(fetcher, api_url, reporter=reporter, page_size=page_size)
        categories = get_categories(fetcher, api_url, reporter=reporter, page_size=page_size)
        tags = get_tags(fetcher, api_url, reporter=reporter, page_size=page_size)
        comments = get_comments(fetcher, api_url, reporter=reporter, page_size=page_size)
        if settings.save_meta:
            write_meta(settings.output_dir, "users", dump_by_id(users))
            write_meta(settings.output_dir, "categories", dump_by_id(categories))
            write_meta(settings.output_dir, "tags", dump_by_id(tags))
            write_meta(settings.output_dir, "comments", dump_comments(comments))

        posts = get_posts(
            fetcher, api_url,
            reporter=reporter, page_size=page_size, limit=settings.posts_limit,
        )

        ctx = ExportContext(
            settings=settings,
            fetcher=fetcher,
            reporter=reporter,
            frontmatter=frontmatter,
            comments=comments,
        )
        saved = 0
        for post in posts:
            if not post_filter.search(post.link):
                continue
            enrich_post(post, users, categories, tags)
            save_post(post, ctx)
            saved += 1

    reporter.end_status("Saved all posts (%d)", saved)
    reporter.summarize()
    if not reporter.errors.is_empty:
        write_meta(settings.output_dir, "errors", reporter.errors.model_dump(mode="json"))
    return reporter.errors
