"""Localize the links and images of a rendered post.

The post body is parsed into a BeautifulSoup tree and walked in document
order. ``a[href]``, ``img[src]`` and ``img[srcset]`` references that point at
the site's own uploads (links) or host (images) are downloaded into the post's
output directory and the attribute is rewritten to the local filename.
Everything else in the tree is left alone.
"""

from __future__ import annotations

import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional
from urllib.parse import SplitResult, unquote, urldefrag, urljoin, urlsplit

import tldextract
from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup

from .config import Settings
from .ingest_http import Fetcher, FetchError
from .report import ExportError, Reporter

logger = logging.getLogger(__name__)

PLAUSIBLE_SUFFIX_RE = re.compile(r"\.(png|jpg|gif|pdf|jpeg|webp)$", re.IGNORECASE)

# exactly one URL token and one descriptor, with the surrounding whitespace
SRCSET_PAIR_RE = re.compile(r"^(\s*)(\S+)(\s+\S+\s*)$")

PREFERRED_SUFFIX = {
    "text/html": ".html",
    "image/jpeg": ".jpg",
}

FETCHABLE_SCHEMES = frozenset({"http", "https"})

# Built-in type map only, so extensions don't depend on the host's mime.types
_MIME_TYPES = mimetypes.MimeTypes()

# Bundled public suffix snapshot; never goes to the network
_EXTRACT = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


@dataclass
class Asset:
    """A remote file worth copying next to the post."""

    url: str
    path: str
    filename: str


def registrable_domain(host: Optional[str]) -> Optional[str]:
    """Return the effective TLD plus one label, e.g. ``example.co.uk``."""
    if not host:
        return None
    ext = _EXTRACT(host)
    if not ext.domain or not ext.suffix:
        return None
    return f"{ext.domain}.{ext.suffix}".lower()


def asset_filename(path: str) -> str:
    """Last segment of a URL path, percent-decoded."""
    name = PurePosixPath(unquote(path)).name
    return name or "index"


def with_mime_extension(filename: str, content_type: str) -> str:
    """Append an extension matching ``content_type`` unless one is already there."""
    mime = content_type.split(";")[0].strip().lower()
    if not mime:
        return filename
    suffixes = _MIME_TYPES.guess_all_extensions(mime)
    if not suffixes:
        return filename
    lowered = filename.lower()
    if any(lowered.endswith(s) for s in suffixes):
        return filename
    return filename + PREFERRED_SUFFIX.get(mime, suffixes[0])


def walk(node: Tag) -> Iterator[Tag]:
    """Yield ``node`` and every element below it, depth-first, pre-order."""
    yield node
    for child in list(node.children):
        if isinstance(child, Tag):
            yield from walk(child)


def parse_body(html: str, name: str) -> Tag:
    """Parse a rendered HTML fragment and return its ``<body>`` element.

    Raises:
        ExportError: If the fragment cannot be parsed or has no body.
    """
    try:
        soup = BeautifulSoup(f"<html><body>{html}</body></html>", "lxml")
    except ParserRejectedMarkup as exc:
        raise ExportError(f"Couldn't parse html for {name}: {exc}") from exc
    body = soup.body
    if body is None:
        raise ExportError(f"Failed to find body in {name}")
    return body


def render_body(body: Tag) -> str:
    """Serialize the children of ``body``, without the body tag itself."""
    return body.decode_contents()


class AssetRewriter:
    """Rewrites the references of one post's tree.

    Args:
        settings: Export settings (uploads path, mirror mode).
        fetcher: Cached HTTP fetcher for probes and downloads.
        reporter: Receives warnings and missing-asset records.
        source_url: Absolute URL of the post; the base for relative references.
        output_dir: The post's output directory; downloads land here.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: Fetcher,
        reporter: Reporter,
        source_url: str,
        output_dir: Path,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.reporter = reporter
        self.source_url = source_url
        self.source: SplitResult = urlsplit(source_url)
        self.output_dir = output_dir
        self.uploads_prefix = settings.uploads_path.lower()

    # -- classification --------------------------------------------------

    def _resolve(self, ref: str) -> Optional[SplitResult]:
        ref = ref.strip()
        if not ref:
            return None
        try:
            absolute, _ = urldefrag(urljoin(self.source_url, ref))
            resolved = urlsplit(absolute)
        except ValueError as exc:
            self.reporter.warn("Failed to parse asset url '%s': %s", ref, exc)
            return None
        if resolved.scheme.lower() not in FETCHABLE_SCHEMES:
            return None
        return resolved

    def _same_host(self, resolved: SplitResult) -> bool:
        return (resolved.hostname or "") == (self.source.hostname or "")

    def _same_site(self, resolved: SplitResult) -> bool:
        source_org = registrable_domain(self.source.hostname)
        return source_org is not None and source_org == registrable_domain(resolved.hostname)

    def _in_uploads(self, path: str) -> bool:
        return path.lower().startswith(self.uploads_prefix)

    @staticmethod
    def _asset(resolved: SplitResult) -> Asset:
        return Asset(url=resolved.geturl(), path=resolved.path, filename=asset_filename(resolved.path))

    def classify_link(self, ref: str) -> Optional[Asset]:
        """An ``href`` is local when it is under the uploads path on this site."""
        resolved = self._resolve(ref)
        if resolved is None or not self._in_uploads(resolved.path):
            return None
        if self._same_site(resolved) or self._same_host(resolved):
            return self._asset(resolved)
        return None

    def classify_image(self, ref: str) -> Optional[Asset]:
        """An image is local when it is on this host, or always when mirroring."""
        resolved = self._resolve(ref)
        if resolved is None:
            return None
        if self.settings.mirror or self._same_host(resolved):
            return self._asset(resolved)
        return None

    # -- materialization -------------------------------------------------

    def _probe_filename(self, asset: Asset) -> str:
        try:
            probe = self.fetcher.head(asset.url)
        except FetchError:
            return asset.filename
        if not probe.is_success:
            return asset.filename
        return with_mime_extension(asset.filename, probe.content_type)

    def materialize(self, asset: Asset) -> str:
        """Copy ``asset`` into the post directory; return the new attribute value."""
        if not self.settings.mirror and not self._in_uploads(asset.path):
            # a page on this site, not a file
            return asset.path

        filename = self._probe_filename(asset)
        if not PLAUSIBLE_SUFFIX_RE.search(filename):
            self.reporter.warn("Suspicious filename: %s", filename)

        try:
            resp = self.fetcher.get(asset.url)
        except FetchError as exc:
            self.reporter.warn("Failed to get linked file %s: %s", asset.url, exc)
            return asset.url
        if resp.status_code != 200:
            self.reporter.missing(asset.url, resp.status)
            return asset.url

        destination = self.output_dir / filename
        try:
            destination.write_bytes(resp.body)
        except OSError as exc:
            raise ExportError(f"Failed to write {filename} to {self.output_dir}: {exc}") from exc
        logger.debug("Saved %s (%d bytes)", destination, len(resp.body))
        return filename

    # -- attributes ------------------------------------------------------

    def rewrite_srcset(self, value: str) -> str:
        """Rewrite each ``URL descriptor`` pair; pass anything else through."""
        out = []
        for part in value.split(","):
            m = SRCSET_PAIR_RE.match(part)
            if not m:
                out.append(part)
                continue
            asset = self.classify_image(m.group(2))
            url = self.materialize(asset) if asset is not None else m.group(2)
            out.append(m.group(1) + url + m.group(3))
        return ",".join(out)

    def visit(self, tag: Tag) -> None:
        if tag.name == "a":
            href = tag.get("href")
            if isinstance(href, str):
                asset = self.classify_link(href)
                if asset is not None:
                    tag["href"] = self.materialize(asset)
        elif tag.name == "img":
            src = tag.get("src")
            if isinstance(src, str):
                asset = self.classify_image(src)
                if asset is not None:
                    tag["src"] = self.materialize(asset)
            srcset = tag.get("srcset")
            if isinstance(srcset, str):
                tag["srcset"] = self.rewrite_srcset(srcset)

    def rewrite_tree(self, root: Tag) -> Tag:
        """Visit every element under ``root`` in pre-order; returns ``root``."""
        for tag in walk(root):
            self.visit(tag)
        return root


def rewrite_content(
    html: str,
    *,
    settings: Settings,
    fetcher: Fetcher,
    reporter: Reporter,
    source_url: str,
    output_dir: Path,
) -> str:
    """Parse a post body, localize its assets, and return the new markup."""
    body = parse_body(html, source_url)
    rewriter = AssetRewriter(settings, fetcher, reporter, source_url, output_dir)
    return render_body(rewriter.rewrite_tree(body))

