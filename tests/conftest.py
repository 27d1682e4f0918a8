"""Shared test fixtures for wordpress-export tests."""

import logging
from pathlib import Path

import pytest

from fakewp import PNG_BYTES, FakeWordPress, make_post
from wp_export.config import Settings
from wp_export.ingest_http import Fetcher
from wp_export.report import Reporter


@pytest.fixture
def wp() -> FakeWordPress:
    """A site with 3 posts, 1 author, 1 category and 1 tag."""
    site = FakeWordPress()
    site.collections["users"] = [{"id": 7, "name": "Ada Lovelace", "slug": "ada"}]
    site.collections["categories"] = [{"id": 3, "name": "News", "slug": "news"}]
    site.collections["tags"] = [
        {"id": 5, "name": "Python", "slug": "python", "description": "", "taxonomy": "post_tag"}
    ]
    site.collections["posts"] = [
        make_post(
            1,
            "/2020/01/first-post/",
            '<p>Hello <img src="/wp-content/uploads/x.png" alt="x"> '
            '<a href="https://other.org/page">elsewhere</a></p>',
        ),
        make_post(2, "/2020/02/second-post/"),
        make_post(3, "/2020/03/third-post/"),
    ]
    site.files["/wp-content/uploads/x.png"] = (PNG_BYTES, "image/png")
    return site


@pytest.fixture
def settings(tmp_path: Path, wp: FakeWordPress) -> Settings:
    """Quiet settings writing under tmp_path and pointing at the fake API."""
    return Settings(
        api_url=wp.api_url,
        output_dir=tmp_path / "output",
        quiet=True,
    )


@pytest.fixture
def reporter() -> Reporter:
    return Reporter()


@pytest.fixture
def fetcher(settings: Settings, wp: FakeWordPress, reporter: Reporter):
    f = Fetcher(settings, reporter=reporter, transport=wp.transport)
    yield f
    f.close()


@pytest.fixture
def restore_logging():
    """Put the root logger back the way it was after a test reconfigures it."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
