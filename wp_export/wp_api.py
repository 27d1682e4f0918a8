"""WordPress REST API access: discovery, pagination and record mapping."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar
from urllib.parse import urlencode, urlsplit

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from .ingest_http import Fetcher, FetchError
from .models import Category, Comment, Post, Tag, User
from .report import ExportError, Reporter

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

API_REL_RE = re.compile(r'<([^>]+)>\s*;\s*rel="https://api\.w\.org/"')

# _fields requested for each collection, keeps responses small
POST_FIELDS = "id,date_gmt,slug,status,title,content,excerpt,author,categories,tags,link"
TAG_FIELDS = "id,name,slug,description,taxonomy"
CATEGORY_FIELDS = "id,name,slug"
USER_FIELDS = "id,name,slug"
COMMENT_FIELDS = (
    "id,author,author_email,author_ip,author_name,author_url,author_user_agent,"
    "content,date,date_gmt,link,parent,post,type,author_avatar_urls,meta"
)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def normalize_site_url(raw: str) -> str:
    """Accept ``example.com`` as well as ``https://example.com``."""
    candidate = raw.strip()
    try:
        parts = urlsplit(candidate)
        if parts.scheme and parts.netloc:
            return candidate
        parts = urlsplit("http://" + candidate)
    except ValueError as exc:
        raise ExportError(f"'{raw}' doesn't look like a url: {exc}") from exc
    if not parts.netloc:
        raise ExportError(f"'{raw}' doesn't look like a url")
    return "http://" + candidate


def discover_api(fetcher: Fetcher, site_url: str) -> str:
    """Find the REST API root advertised in the site's ``Link`` headers.

    See https://developer.wordpress.org/rest-api/using-the-rest-api/discovery/
    """
    try:
        resp = fetcher.client.head(site_url)
    except httpx.HTTPError as exc:
        raise ExportError(
            f"Couldn't fetch {site_url} while looking for site API: {exc}"
        ) from exc
    if resp.status_code != 200:
        raise ExportError(
            f"Got {resp.status_code} {resp.reason_phrase} response while fetching {site_url}"
        )
    links = resp.headers.get_list("link")
    if not links:
        raise ExportError(f"No Link: headers in response from {site_url}")
    for link in links:
        m = API_REL_RE.search(link)
        if m:
            logger.debug("Discovered API at %s", m.group(1))
            return m.group(1)
    raise ExportError(f"Unable to discover API for {site_url} - maybe use the --api flag?")


def with_trailing_slash(api_url: str) -> str:
    return api_url if api_url.endswith("/") else api_url + "/"


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

def collection_url(api_url: str, name: str, params: Dict[str, Any]) -> str:
    """Build the exact request URL for one page of a collection."""
    return f"{with_trailing_slash(api_url)}wp/v2/{name}?{urlencode(params)}"


def fetch_collection(
    fetcher: Fetcher,
    api_url: str,
    name: str,
    fields: str,
    *,
    reporter: Reporter,
    page_size: int = 100,
    limit: Optional[int] = None,
) -> List[Any]:
    """Fetch every record of a REST collection, page by page.

    Stops at the first page shorter than the page size, or once ``limit``
    records have been collected. The last page is returned whole, so the
    result may slightly exceed ``limit``.

    Raises:
        ExportError: If any page fails to fetch or is not a JSON array.
    """
    if limit is not None and limit < page_size:
        page_size = limit

    records: List[Any] = []
    page = 1
    while True:
        url = collection_url(
            api_url,
            name,
            {"context": "view", "_fields": fields, "per_page": page_size, "page": page},
        )
        reporter.status("fetching %s %d ...", name, (page - 1) * page_size)
        try:
            resp = fetcher.get(url)
        except FetchError as exc:
            raise ExportError(f"failed to fetch {url}: {exc}") from exc
        if not resp.is_success:
            raise ExportError(f"failed to fetch {url}: {resp.status}")
        try:
            this_page = resp.decode_json()
        except (ValueError, UnicodeDecodeError) as exc:
            raise ExportError(f"failed to parse response from {url}: {exc}") from exc
        if not isinstance(this_page, list):
            raise ExportError(
                f"failed to parse response from {url}: expected a JSON array, "
                f"got {type(this_page).__name__}"
            )

        records.extend(this_page)
        if len(this_page) < page_size or (limit is not None and len(records) >= limit):
            reporter.end_status("fetched %d %s", len(records), name)
            return records
        page += 1


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def map_records(raw: Iterable[Any], model: Type[ModelT], name: str) -> List[ModelT]:
    """Project loosely-typed JSON records onto ``model``.

    Unknown fields are ignored and missing optional fields take defaults.
    """
    try:
        return TypeAdapter(List[model]).validate_python(list(raw))  # type: ignore[valid-type]
    except ValidationError as exc:
        raise ExportError(f"failed to parse result for {name}: {exc}") from exc


def index_by_id(records: Iterable[ModelT], kind: str) -> Dict[int, ModelT]:
    """Map records by ``id``; a repeated ID is fatal."""
    out: Dict[int, ModelT] = {}
    for r in records:
        rid = getattr(r, "id")
        if rid in out:
            raise ExportError(f"duplicate {kind}: {rid}")
        out[rid] = r
    return out


def group_comments(comments: Iterable[Comment]) -> Dict[int, List[Comment]]:
    """Group comments by owning post ID, keeping fetch order."""
    grouped: Dict[int, List[Comment]] = {}
    for c in comments:
        grouped.setdefault(c.post, []).append(c)
    return grouped


def _fetch_mapped(
    fetcher: Fetcher,
    api_url: str,
    name: str,
    fields: str,
    model: Type[ModelT],
    *,
    reporter: Reporter,
    page_size: int,
    limit: Optional[int] = None,
) -> List[ModelT]:
    raw = fetch_collection(
        fetcher, api_url, name, fields,
        reporter=reporter, page_size=page_size, limit=limit,
    )
    return map_records(raw, model, name)


def get_users(fetcher: Fetcher, api_url: str, *, reporter: Reporter, page_size: int = 100) -> Dict[int, User]:
    users = _fetch_mapped(fetcher, api_url, "users", USER_FIELDS, User,
                          reporter=reporter, page_size=page_size)
    return index_by_id(users, "user")


def get_categories(fetcher: Fetcher, api_url: str, *, reporter: Reporter, page_size: int = 100) -> Dict[int, Category]:
    categories = _fetch_mapped(fetcher, api_url, "categories", CATEGORY_FIELDS, Category,
                               reporter=reporter, page_size=page_size)
    return index_by_id(categories, "category")


def get_tags(fetcher: Fetcher, api_url: str, *, reporter: Reporter, page_size: int = 100) -> Dict[int, Tag]:
    tags = _fetch_mapped(fetcher, api_url, "tags", TAG_FIELDS, Tag,
                         reporter=reporter, page_size=page_size)
    return index_by_id(tags, "tag")


def get_comments(fetcher: Fetcher, api_url: str, *, reporter: Reporter, page_size: int = 100) -> Dict[int, List[Comment]]:
    comments = _fetch_mapped(fetcher, api_url, "comments", COMMENT_FIELDS, Comment,
                             reporter=reporter, page_size=page_size)
    return group_comments(comments)


def get_posts(
    fetcher: Fetcher,
    api_url: str,
    *,
    reporter: Reporter,
    page_size: int = 100,
    limit: Optional[int] = None,
) -> List[Post]:
    """Fetch posts in server order; duplicate post IDs are fatal."""
    posts = _fetch_mapped(fetcher, api_url, "posts", POST_FIELDS, Post,
                          reporter=reporter, page_size=page_size, limit=limit)
    index_by_id(posts, "post")
    return posts


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

def enrich_post(
    post: Post,
    users: Dict[int, User],
    categories: Dict[int, Category],
    tags: Dict[int, Tag],
) -> Post:
    """Fill in author, category and tag names in place.

    Raises:
        ExportError: If any referenced ID has no record.
    """
    author = users.get(post.author)
    if author is None:
        raise ExportError(f"No such author as {post.author} in post {post.link}")
    post.author_name = author.name

    category_names: List[str] = []
    for cid in post.categories:
        cat = categories.get(cid)
        if cat is None:
            raise ExportError(f"No such category as {cid} in post {post.link}")
        category_names.append(cat.name)
    post.category_names = category_names

    tag_names: List[str] = []
    for tid in post.tags:
        t = tags.get(tid)
        if t is None:
            raise ExportError(f"No such tag as {tid} in post {post.link}")
        tag_names.append(t.name)
    post.tag_names = tag_names
    return post


def dump_by_id(records: Dict[int, BaseModel]) -> Dict[str, Any]:
    """JSON-ready view of an ID map, keyed by the ID as a string."""
    return {str(k): v.model_dump(mode="json", exclude_none=True) for k, v in records.items()}


def dump_comments(grouped: Dict[int, List[Comment]]) -> Dict[str, Any]:
    return {
        str(post_id): [c.model_dump(mode="json", exclude_none=True) for c in comments]
        for post_id, comments in grouped.items()
    }

