"""Pydantic models shared across the exporter."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# WordPress records
# ---------------------------------------------------------------------------

class Rendered(BaseModel):
    """A server-rendered HTML fragment, as WordPress returns titles and bodies."""

    rendered: str = ""


class Post(BaseModel):
    """A published post, plus the display names filled in by enrichment."""

    id: int
    date_gmt: str = ""
    slug: str = ""
    status: str = ""
    link: str = ""
    title: Rendered = Field(default_factory=Rendered)
    content: Rendered = Field(default_factory=Rendered)
    excerpt: Rendered = Field(default_factory=Rendered)
    author: int = 0
    categories: List[int] = Field(default_factory=list)
    tags: List[int] = Field(default_factory=list)

    author_name: str = ""
    category_names: List[str] = Field(default_factory=list)
    tag_names: List[str] = Field(default_factory=list)


class Tag(BaseModel):
    id: int
    name: str = ""
    slug: str = ""
    description: str = ""
    taxonomy: str = ""


class Category(BaseModel):
    id: int
    name: str = ""
    slug: str = ""


class User(BaseModel):
    id: int
    name: str = ""
    slug: str = ""


class Comment(BaseModel):
    """A comment attached to a post; guest comments carry author details inline."""

    id: int
    post: int = 0
    parent: Optional[int] = None
    author: Optional[int] = None
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    author_ip: Optional[str] = None
    author_url: Optional[str] = None
    author_user_agent: Optional[str] = None
    content: Optional[Rendered] = None
    date: Optional[str] = None
    date_gmt: Optional[str] = None
    link: Optional[str] = None
    type: Optional[str] = None
    author_avatar_urls: Optional[Dict[str, str]] = None
    meta: Any = None


class FrontMatter(BaseModel):
    """YAML frontmatter of an exported post. Field order is the output order."""

    template: str
    title: str
    date: str
    excerpt: str
    author: str
    categories: List[str]
    tags: List[str]


# ---------------------------------------------------------------------------
# HTTP cache
# ---------------------------------------------------------------------------

class CachedResponse(BaseModel):
    """The result of fetching a single URL, as stored in the response cache."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    request: str
    status_code: int = 0
    status: str = ""
    body: bytes = b""
    content_type: str = ""
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    fetched_at: Optional[datetime] = None

    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        """Return True for a 2xx response."""
        return self.error is None and 200 <= self.status_code <= 299

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def decode_json(self) -> Any:
        """Decode the body as JSON into plain Python values."""
        return json.loads(self.body)


# ---------------------------------------------------------------------------
# Run report
# ---------------------------------------------------------------------------

class MissingAsset(BaseModel):
    page: str
    url: str
    status: str


class WarningRecord(BaseModel):
    page: str
    message: str


class ErrorReport(BaseModel):
    """Recoverable problems accumulated during one run."""

    missing: List[MissingAsset] = Field(default_factory=list)
    warnings: List[WarningRecord] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.missing and not self.warnings
