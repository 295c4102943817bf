"""Shared fixtures for unit tests."""

import logging
from pathlib import Path
from typing import Callable

import pytest

from dotserve.domain.http_types import HttpRequest
from tests.utils.doubles import RecordingHandler


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure logs propagate to root so caplog can catch them."""
    logger = logging.getLogger("dotserve")
    old_propagate = logger.propagate
    old_level = logger.level
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    yield
    logger.propagate = old_propagate
    logger.setLevel(old_level)


@pytest.fixture(name="make_request")
def fixture_make_request() -> Callable[..., HttpRequest]:
    """Build requests with lower-cased headers and a default client address."""

    def _make(
        path: str = "/",
        method: str = "GET",
        headers: dict[str, str] | None = None,
        client: str = "127.0.0.1:50000",
    ) -> HttpRequest:
        return HttpRequest(
            method,
            path,
            {name.lower(): value for name, value in (headers or {}).items()},
            b"",
            client,
        )

    return _make


@pytest.fixture(name="recording_handler")
def fixture_recording_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture(name="served_dir")
def fixture_served_dir(tmp_path: Path) -> Path:
    """A small directory tree to serve."""
    (tmp_path / "index.html").write_text("<h1>home</h1>\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_bytes(b"0123456789abcdefghij")
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "b.txt").write_text("b", encoding="utf-8")
    (docs / "a & b.txt").write_text("a", encoding="utf-8")
    (docs / "nested").mkdir()
    return tmp_path
