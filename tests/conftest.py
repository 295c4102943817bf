"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import wait_for_log_event, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"
AUTH_USER = "alice"
AUTH_SECRET = "s3cret-pass"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    process: subprocess.Popen[str]
    log_file: Path


def populate_directory(directory: Path) -> Path:
    """Write the small tree the integration tests serve."""

    (directory / "index.html").write_text(
        "<html><body><h1>served by dotserve</h1></body></html>\n" * 20,
        encoding="utf-8",
    )
    (directory / "notes.txt").write_bytes(b"0123456789abcdefghij")
    (directory / "large.bin").write_bytes(bytes(range(256)) * 4096)
    docs = directory / "docs"
    docs.mkdir()
    (docs / "readme.md").write_text("# docs\n", encoding="utf-8")
    return directory


def launch_server(
    directory: Path,
    log_file: Path,
    extra_args: list[str] | None = None,
    secret: str | None = None,
    host: str = "127.0.0.1",
    port: int = 0,
) -> Generator[ServerProcessInfo, None, None]:
    """Run main.py in a subprocess and yield once it reports its listening port."""

    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--dir",
        str(directory),
        "--host",
        host,
        "--port",
        str(port),
        "--log-destination",
        str(log_file),
    ]
    if secret is not None:
        args.append("--password-stdin")
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        if secret is not None:
            process.stdin.write(secret + "\n")
        process.stdin.close()
        try:
            listening = wait_for_log_event(log_file, "server_listening", timeout=10)
            port = listening["port"]
            wait_for_port(host, port)
        except Exception:
            # If startup failed, print stdout/stderr to help debug
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "directory": directory,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="served_directory")
def _served_directory(tmp_path_factory: "TempPathFactory") -> Path:
    return populate_directory(tmp_path_factory.mktemp("served"))


@pytest.fixture(name="log_file")
def _log_file(tmp_path_factory: "TempPathFactory") -> Path:
    return tmp_path_factory.mktemp("logs") / "server.log"


@pytest.fixture(name="server_process")
def _server_process(
    served_directory: Path, log_file: Path
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the HTTP server in a background process for integration tests."""

    yield from launch_server(served_directory, log_file, ["--log-level", "DEBUG"])


@pytest.fixture(name="auth_server_process")
def _auth_server_process(
    served_directory: Path, log_file: Path
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server with Basic authentication enabled via --password-stdin."""

    yield from launch_server(
        served_directory, log_file, ["--user", AUTH_USER], secret=AUTH_SECRET
    )


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
