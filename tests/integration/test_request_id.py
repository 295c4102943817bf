"""Integration tests for X-Request-ID propagation."""

from __future__ import annotations

import re
import threading
from typing import TYPE_CHECKING

import pytest
import requests

from tests.utils.http import read_log_events

pytestmark = pytest.mark.integration

if TYPE_CHECKING:
    from tests.conftest import ServerProcessInfo

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
)


def test_server_generates_request_id_when_not_provided(base_url: str) -> None:
    response = requests.get(f"{base_url}/", timeout=5)
    assert UUID_PATTERN.match(response.headers["X-Request-ID"])


def test_server_echoes_incoming_request_id(base_url: str) -> None:
    response = requests.get(
        f"{base_url}/notes.txt", headers={"X-Request-ID": "custom-id-12345"}, timeout=5
    )
    assert response.headers["X-Request-ID"] == "custom-id-12345"


def test_error_responses_carry_request_id(base_url: str) -> None:
    response = requests.get(
        f"{base_url}/nonexistent", headers={"X-Request-ID": "error-id"}, timeout=5
    )
    assert response.status_code == 404
    assert response.headers["X-Request-ID"] == "error-id"


def test_request_id_is_isolated_across_concurrent_requests(base_url: str) -> None:
    results = {}

    def fetch(index: int) -> None:
        response = requests.get(
            f"{base_url}/notes.txt",
            headers={"X-Request-ID": f"concurrent-{index}"},
            timeout=5,
        )
        results[index] = response.headers.get("X-Request-ID")

    threads = [threading.Thread(target=fetch, args=(i,)) for i in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == {i: f"concurrent-{i}" for i in range(10)}


def test_request_log_lines_carry_request_id(
    base_url: str, server_process: "ServerProcessInfo"
) -> None:
    requests.get(f"{base_url}/notes.txt", headers={"X-Request-ID": "logged-id"}, timeout=5)
    received = [
        record
        for record in read_log_events(server_process["log_file"])
        if record.get("event") == "request_received"
        and record.get("correlation_id") == "logged-id"
    ]
    assert received
    assert received[0]["route"] == "/notes.txt"
    assert received[0]["method"] == "GET"
