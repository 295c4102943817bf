"""Static file serving handler."""

import html
import logging
import mimetypes
import stat
import urllib.parse
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from typing import Iterator, Optional

from dotserve.bootstrap.config import ALLOWED_METHODS, SECURITY_HEADERS
from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.domain.http_types import HttpRequest, HttpResponse, should_close
from dotserve.domain.response_builders import (
    forbidden_response,
    html_response,
    not_found_response,
    not_modified_response,
    range_not_satisfiable_response,
    redirect_response,
)
from dotserve.domain.sandbox import ForbiddenPath, resolve_sandbox_path
from dotserve.pipeline.validation import validate_request

FILE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.handlers.file"), {})

INDEX_DOCUMENT = "index.html"
DEFAULT_CHUNK_SIZE = 65536
BYTES_UNIT = "bytes="


class RangeNotSatisfiable(Exception):
    """Raised when a Range header cannot be applied to the resource."""


def stream_file(
    filepath: Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    offset: int = 0,
    length: Optional[int] = None,
) -> Iterator[bytes]:
    """Yield ``length`` bytes of the file from ``offset`` in fixed-size chunks.

    The file is opened lazily, so a stream that is never iterated (HEAD
    requests) never touches the disk.
    """
    remaining = length
    with open(filepath, "rb") as file_handle:
        if offset:
            file_handle.seek(offset)
        while remaining is None or remaining > 0:
            size = chunk_size if remaining is None else min(chunk_size, remaining)
            chunk = file_handle.read(size)
            if not chunk:
                break
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk


def content_type_for(filepath: Path) -> str:
    mime_type, _ = mimetypes.guess_type(filepath.as_posix())
    if mime_type is None:
        return "application/octet-stream"
    if mime_type.startswith("text/"):
        return f"{mime_type}; charset=utf-8"
    return mime_type


def parse_byte_range(header: str, size: int) -> Optional[tuple[int, int]]:
    """Return (offset, length) for a single byte range.

    Multi-range requests return None so the whole resource is served.
    Malformed or non-overlapping ranges raise RangeNotSatisfiable.
    """
    if not header.startswith(BYTES_UNIT):
        raise RangeNotSatisfiable(header)
    specs = [spec.strip() for spec in header[len(BYTES_UNIT) :].split(",")]
    if len(specs) != 1:
        return None

    first, dash, last = specs[0].partition("-")
    if not dash:
        raise RangeNotSatisfiable(header)
    try:
        if first == "":
            suffix = int(last)
            if suffix <= 0 or last.startswith(("+", "-")):
                raise RangeNotSatisfiable(header)
            suffix = min(suffix, size)
            return size - suffix, suffix

        start = int(first)
        end = int(last) if last else size - 1
    except ValueError as error:
        raise RangeNotSatisfiable(header) from error

    if start < 0 or start >= size or end < start:
        raise RangeNotSatisfiable(header)
    end = min(end, size - 1)
    return start, end - start + 1


def modified_since(header: str, mtime: float) -> bool:
    """Return False when the file has not changed since the header's date."""
    try:
        threshold = parsedate_to_datetime(header)
    except (TypeError, ValueError, IndexError):
        return True
    return int(mtime) > threshold.timestamp()


def directory_listing(directory: Path) -> str:
    """Render a ``<pre>`` listing of the directory, sorted by name."""
    lines = ['<!doctype html>', '<meta name="viewport" content="width=device-width">', "<pre>"]
    for entry in sorted(directory.iterdir(), key=lambda item: item.name):
        name = entry.name + "/" if entry.is_dir() else entry.name
        href = urllib.parse.quote(name)
        lines.append(f'<a href="{html.escape(href)}">{html.escape(name)}</a>')
    lines.append("</pre>")
    return "\n".join(lines) + "\n"


class FileHandler:
    """Terminal handler mapping URL paths onto files under ``directory``."""

    name = "files"

    def __init__(self, directory: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.directory = directory
        self.chunk_size = chunk_size

    def __call__(self, request: HttpRequest) -> HttpResponse:
        rejection = validate_request(request, ALLOWED_METHODS, SECURITY_HEADERS)
        if rejection is not None:
            return rejection

        try:
            resolved_path = resolve_sandbox_path(self.directory, request.path)
        except ForbiddenPath:
            FILE_LOGGER.warning(
                "Forbidden path access blocked",
                extra={
                    "event": "forbidden_path",
                    "client": request.client,
                    "route": request.path,
                },
            )
            return forbidden_response(request, SECURITY_HEADERS)

        try:
            info = resolved_path.stat()
        except OSError:
            return self._not_found(request)

        if stat.S_ISDIR(info.st_mode):
            return self._serve_directory(request, resolved_path)
        if not stat.S_ISREG(info.st_mode):
            return self._not_found(request)
        return self._serve_file(request, resolved_path, info)

    def _not_found(self, request: HttpRequest) -> HttpResponse:
        FILE_LOGGER.info(
            "File not found",
            extra={"event": "file_not_found", "route": request.path},
        )
        return not_found_response(request, SECURITY_HEADERS)

    def _serve_directory(self, request: HttpRequest, directory: Path) -> HttpResponse:
        if not request.path.endswith("/"):
            location = urllib.parse.quote(request.path) + "/"
            if request.query:
                location = f"{location}?{request.query}"
            return redirect_response(request, location, SECURITY_HEADERS)

        index_path = directory / INDEX_DOCUMENT
        try:
            index_info = index_path.stat()
        except OSError:
            index_info = None
        if index_info is not None and stat.S_ISREG(index_info.st_mode):
            return self._serve_file(request, index_path, index_info)

        try:
            markup = directory_listing(directory)
        except OSError:
            FILE_LOGGER.error(
                "Directory listing failed",
                extra={"event": "listing_failed", "route": request.path},
            )
            return not_found_response(request, SECURITY_HEADERS)
        return html_response(markup, request, SECURITY_HEADERS)

    def _serve_file(self, request: HttpRequest, filepath: Path, info) -> HttpResponse:
        size = info.st_size
        headers = {
            "Content-Type": content_type_for(filepath),
            "Last-Modified": formatdate(info.st_mtime, usegmt=True),
            "Accept-Ranges": "bytes",
            **SECURITY_HEADERS,
        }

        since = request.headers.get("if-modified-since")
        if since and "if-none-match" not in request.headers:
            if not modified_since(since, info.st_mtime):
                return not_modified_response(request, headers)

        status_line = "HTTP/1.1 200 OK"
        offset, length = 0, size
        range_header = request.headers.get("range")
        if range_header:
            try:
                byte_range = parse_byte_range(range_header.strip(), size)
            except RangeNotSatisfiable:
                return range_not_satisfiable_response(request, size, SECURITY_HEADERS)
            if byte_range is not None:
                offset, length = byte_range
                status_line = "HTTP/1.1 206 Partial Content"
                headers["Content-Range"] = f"bytes {offset}-{offset + length - 1}/{size}"

        headers["Content-Length"] = str(length)
        if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
            FILE_LOGGER.debug(
                "Serving file",
                extra={
                    "event": "file_served",
                    "route": request.path,
                    "bytes_out": length,
                },
            )
        return HttpResponse(
            status_line,
            headers,
            b"",
            should_close(request.headers),
            body_iter=stream_file(filepath, self.chunk_size, offset, length),
        )
