"""HTTP fetching with a disk-backed response cache.

Every request is a GET through one shared client. When a cache directory is
configured, responses are stored under the SHA-256 of the exact request URL:
successes are replayed without touching the network, and transport failures
are stored too so that a repeat run fails the same way.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

import httpx
from pydantic import ValidationError

from .config import Settings
from .models import CachedResponse
from .report import Reporter

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """A request that produced no HTTP response at all."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _sha256_text(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _status_line(resp: httpx.Response) -> str:
    return f"{resp.status_code} {resp.reason_phrase}".strip()


def _build_conditional_headers(entry: Optional[CachedResponse]) -> Dict[str, str]:
    """Build If-None-Match / If-Modified-Since headers from a cached entry."""
    h: Dict[str, str] = {}
    if entry and entry.etag:
        h["if-none-match"] = entry.etag
    if entry and entry.last_modified:
        h["if-modified-since"] = entry.last_modified
    return h


def _client(settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    return httpx.Client(
        timeout=settings.timeout_total,
        follow_redirects=True,
        headers={"user-agent": settings.user_agent},
        transport=transport,
    )


class ResponseCache:
    """One JSON file per request URL, named by the URL's SHA-256."""

    def __init__(self, directory: Path, reporter: Optional[Reporter] = None) -> None:
        self.directory = directory
        self.reporter = reporter

    def path_for(self, url: str) -> Path:
        return self.directory / _sha256_text(url)

    def load(self, url: str) -> Optional[CachedResponse]:
        """Return the stored entry for ``url``, or None on a miss."""
        path = self.path_for(url)
        if not path.exists():
            return None
        try:
            return CachedResponse.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            if self.reporter is not None:
                self.reporter.warn("error decoding cached response for %s: %s", url, exc)
            else:
                logger.warning("error decoding cached response for %s: %s", url, exc)
            return None

    def store(self, entry: CachedResponse) -> None:
        """Write an entry atomically via tmp-file rename."""
        path = self.path_for(entry.request)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(entry.model_dump_json(), encoding="utf-8")
        tmp.replace(path)


class Fetcher:
    """Cached GET requests with a fixed user agent and timeout.

    Args:
        settings: Export settings (timeout, user agent, cache options).
        reporter: Receives warnings about unreadable cache entries.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        reporter: Optional[Reporter] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.reporter = reporter
        self.client = _client(settings, transport)
        self.cache: Optional[ResponseCache] = None
        if settings.cache_dir is not None:
            self.cache = ResponseCache(settings.cache_dir, reporter)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _is_fresh(self, entry: CachedResponse) -> bool:
        if self.settings.stale or entry.fetched_at is None:
            return True
        age = (_utc_now() - entry.fetched_at).total_seconds()
        return age <= self.settings.cache_max_age

    def _warn(self, message: str, *args: object) -> None:
        if self.reporter is not None:
            self.reporter.warn(message, *args)
        else:
            logger.warning(message, *args)

    def _store(self, entry: CachedResponse) -> None:
        if self.cache is not None:
            self.cache.store(entry)

    def get(self, url: str) -> CachedResponse:
        """Fetch ``url``, consulting the cache first.

        Returns:
            The response, whatever its status code.

        Raises:
            FetchError: On a transport failure, now or replayed from the cache.
                A failure while revalidating an expired entry returns that
                entry instead.
        """
        cached = self.cache.load(url) if self.cache is not None else None
        if cached is not None:
            if cached.error:
                logger.debug("Cached failure for %s: %s", url, cached.error)
                raise FetchError(cached.error)
            if self._is_fresh(cached):
                logger.debug("Cache hit: %s", url)
                return cached

        cond_headers = _build_conditional_headers(cached)
        logger.debug("Fetching: %s (conditional=%s)", url, bool(cond_headers))

        fetched_at = _utc_now()
        try:
            resp = self.client.get(url, headers=cond_headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            error = str(exc) or exc.__class__.__name__
            if cached is not None:
                # revalidation failed: keep the stored entry as is
                self._warn("revalidation of %s failed, using cached copy: %s", url, error)
                return cached
            self._store(CachedResponse(request=url, fetched_at=fetched_at, error=error))
            raise FetchError(error) from exc

        # 304 Not Modified: the stored body is still current
        if resp.status_code == 304 and cached is not None:
            logger.debug("Not modified (304): %s", url)
            entry = cached.model_copy(
                update={
                    "fetched_at": fetched_at,
                    "etag": resp.headers.get("etag") or cached.etag,
                    "last_modified": resp.headers.get("last-modified") or cached.last_modified,
                }
            )
            self._store(entry)
            return entry

        entry = CachedResponse(
            request=url,
            status_code=resp.status_code,
            status=_status_line(resp),
            body=resp.content,
            content_type=resp.headers.get("content-type", ""),
            etag=resp.headers.get("etag"),
            last_modified=resp.headers.get("last-modified"),
            fetched_at=fetched_at,
        )
        self._store(entry)
        return entry

    def head(self, url: str) -> CachedResponse:
        """Content-type probe; a full GET so it shares the cache with ``get``."""
        return self.get(url)
