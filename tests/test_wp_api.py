"""Tests for WordPress REST access: discovery, pagination, mapping, enrichment."""

from typing import List

import httpx
import pytest

from fakewp import FakeWordPress, make_post
from wp_export.config import Settings
from wp_export.ingest_http import Fetcher
from wp_export.models import Category, Comment, Post, Tag, User
from wp_export.report import ExportError, Reporter
from wp_export.wp_api import (
    collection_url,
    discover_api,
    enrich_post,
    fetch_collection,
    get_comments,
    get_posts,
    get_tags,
    group_comments,
    index_by_id,
    map_records,
    normalize_site_url,
)

POSTS = "/wp-json/wp/v2/posts"


def _numbered(n: int) -> List[dict]:
    return [{"id": i} for i in range(1, n + 1)]


def _fetcher(settings: Settings, handler) -> Fetcher:
    return Fetcher(settings, transport=httpx.MockTransport(handler))


class TestCollectionUrl:
    """Tests for collection request URLs."""

    def test_query_parameters(self) -> None:
        url = collection_url(
            "https://example.com/wp-json",
            "tags",
            {"context": "view", "_fields": "id,name", "per_page": 100, "page": 2},
        )
        assert url == (
            "https://example.com/wp-json/wp/v2/tags"
            "?context=view&_fields=id%2Cname&per_page=100&page=2"
        )


class TestFetchCollection:
    """Tests for paginated collection fetching."""

    def test_pages_in_order_until_short_page(
        self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter
    ) -> None:
        wp.collections["posts"] = _numbered(250)
        records = fetch_collection(fetcher, wp.api_url, "posts", "id", reporter=reporter)
        assert [r["id"] for r in records] == list(range(1, 251))
        assert wp.count(POSTS) == 3

    def test_exact_multiple_needs_an_empty_page(
        self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter
    ) -> None:
        wp.collections["posts"] = _numbered(200)
        records = fetch_collection(fetcher, wp.api_url, "posts", "id", reporter=reporter)
        assert len(records) == 200
        assert wp.count(POSTS) == 3

    def test_empty_collection(self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter) -> None:
        assert fetch_collection(fetcher, wp.api_url, "comments", "id", reporter=reporter) == []
        assert wp.count("/wp-json/wp/v2/comments") == 1

    def test_small_limit_shrinks_page_size(
        self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter
    ) -> None:
        wp.collections["posts"] = _numbered(250)
        records = fetch_collection(fetcher, wp.api_url, "posts", "id", reporter=reporter, limit=5)
        assert [r["id"] for r in records] == [1, 2, 3, 4, 5]
        assert wp.count(POSTS) == 1
        assert wp.requests[0].url.params["per_page"] == "5"

    def test_limit_keeps_last_page_whole(
        self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter
    ) -> None:
        wp.collections["posts"] = _numbered(250)
        records = fetch_collection(fetcher, wp.api_url, "posts", "id", reporter=reporter, limit=150)
        assert len(records) == 200
        assert wp.count(POSTS) == 2

    def test_non_array_is_fatal(self, settings: Settings, reporter: Reporter) -> None:
        with _fetcher(settings, lambda r: httpx.Response(200, json={"code": "oops"})) as f:
            with pytest.raises(ExportError, match="expected a JSON array"):
                fetch_collection(f, "https://example.com/wp-json/", "posts", "id", reporter=reporter)

    def test_malformed_json_is_fatal(self, settings: Settings, reporter: Reporter) -> None:
        with _fetcher(settings, lambda r: httpx.Response(200, content=b"[{")) as f:
            with pytest.raises(ExportError, match="failed to parse response"):
                fetch_collection(f, "https://example.com/wp-json/", "posts", "id", reporter=reporter)

    def test_http_error_status_is_fatal(self, settings: Settings, reporter: Reporter) -> None:
        with _fetcher(settings, lambda r: httpx.Response(500)) as f:
            with pytest.raises(ExportError, match="500 Internal Server Error"):
                fetch_collection(f, "https://example.com/wp-json/", "posts", "id", reporter=reporter)

    def test_transport_error_is_fatal(
        self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter
    ) -> None:
        wp.broken.add(POSTS)
        with pytest.raises(ExportError, match="failed to fetch"):
            fetch_collection(fetcher, wp.api_url, "posts", "id", reporter=reporter)


class TestMapping:
    """Tests for record mapping and ID checks."""

    def test_map_records_is_lenient(self) -> None:
        tags = map_records([{"id": 1, "name": "a", "count": 4}, {"id": 2}], Tag, "tags")
        assert [t.name for t in tags] == ["a", ""]

    def test_map_records_rejects_wrong_types(self) -> None:
        with pytest.raises(ExportError, match="failed to parse result for posts"):
            map_records([{"id": 1, "categories": "news"}], Post, "posts")

    def test_index_by_id(self) -> None:
        users = index_by_id([User(id=1, name="a"), User(id=2, name="b")], "user")
        assert users[2].name == "b"

    def test_duplicate_id_is_fatal(self) -> None:
        with pytest.raises(ExportError, match="duplicate tag: 5"):
            index_by_id([Tag(id=5), Tag(id=5)], "tag")

    def test_duplicate_post_is_fatal(self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter) -> None:
        wp.collections["posts"].append(make_post(2, "/again/"))
        with pytest.raises(ExportError, match="duplicate post: 2"):
            get_posts(fetcher, wp.api_url, reporter=reporter)

    def test_get_tags(self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter) -> None:
        tags = get_tags(fetcher, wp.api_url, reporter=reporter)
        assert tags[5].name == "Python"
        assert wp.requests[0].url.params["_fields"] == "id,name,slug,description,taxonomy"

    def test_group_comments_keeps_order(self) -> None:
        grouped = group_comments(
            [Comment(id=1, post=10), Comment(id=2, post=11), Comment(id=3, post=10)]
        )
        assert [c.id for c in grouped[10]] == [1, 3]
        assert [c.id for c in grouped[11]] == [2]

    def test_get_comments(self, wp: FakeWordPress, fetcher: Fetcher, reporter: Reporter) -> None:
        wp.collections["comments"] = [
            {"id": 9, "post": 1, "author_name": "Bob", "content": {"rendered": "<p>Hi</p>"}}
        ]
        comments = get_comments(fetcher, wp.api_url, reporter=reporter)
        assert comments[1][0].author_name == "Bob"


class TestEnrichPost:
    """Tests for post enrichment."""

    def _records(self):
        users = {7: User(id=7, name="Ada")}
        categories = {3: Category(id=3, name="News"), 4: Category(id=4, name="Travel")}
        tags = {5: Tag(id=5, name="Python")}
        return users, categories, tags

    def test_names_in_id_order(self) -> None:
        post = Post(id=1, link="https://example.com/p/", author=7, categories=[4, 3], tags=[5])
        enrich_post(post, *self._records())
        assert post.author_name == "Ada"
        assert post.category_names == ["Travel", "News"]
        assert post.tag_names == ["Python"]

    def test_missing_author_is_fatal(self) -> None:
        post = Post(id=1, link="https://example.com/p/", author=99)
        with pytest.raises(ExportError, match="No such author as 99 in post https://example.com/p/"):
            enrich_post(post, *self._records())

    def test_missing_category_is_fatal(self) -> None:
        post = Post(id=1, link="https://example.com/p/", author=7, categories=[3, 42])
        with pytest.raises(ExportError, match="No such category as 42"):
            enrich_post(post, *self._records())

    def test_missing_tag_is_fatal(self) -> None:
        post = Post(id=1, link="https://example.com/p/", author=7, tags=[6])
        with pytest.raises(ExportError, match="No such tag as 6"):
            enrich_post(post, *self._records())


class TestDiscovery:
    """Tests for API discovery."""

    def test_normalize_site_url(self) -> None:
        assert normalize_site_url("example.com") == "http://example.com"
        assert normalize_site_url("https://example.com/") == "https://example.com/"

    def test_discover_api_from_link_header(self, wp: FakeWordPress, fetcher: Fetcher) -> None:
        assert discover_api(fetcher, wp.link("/")) == wp.api_url
        assert wp.requests[0].method == "HEAD"

    def test_link_header_among_others(self, settings: Settings) -> None:
        link = (
            '<https://example.com/wp-json/wp/v2/pages/2>; rel="alternate", '
            '<https://example.com/wp-json/>; rel="https://api.w.org/"'
        )
        with _fetcher(settings, lambda r: httpx.Response(200, headers={"link": link})) as f:
            assert discover_api(f, "https://example.com/") == "https://example.com/wp-json/"

    def test_no_link_header(self, settings: Settings) -> None:
        with _fetcher(settings, lambda r: httpx.Response(200)) as f:
            with pytest.raises(ExportError, match="No Link: headers"):
                discover_api(f, "https://example.com/")

    def test_no_api_link(self, settings: Settings) -> None:
        headers = {"link": '<https://example.com/feed/>; rel="alternate"'}
        with _fetcher(settings, lambda r: httpx.Response(200, headers=headers)) as f:
            with pytest.raises(ExportError, match="Unable to discover API"):
                discover_api(f, "https://example.com/")

    def test_non_200(self, settings: Settings) -> None:
        with _fetcher(settings, lambda r: httpx.Response(403)) as f:
            with pytest.raises(ExportError, match="Got 403 Forbidden"):
                discover_api(f, "https://example.com/")
