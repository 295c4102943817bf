"""Response compression middleware (gzip and brotli)."""

import logging
import zlib
from typing import Iterable, Iterator, Optional, Union

import brotli

from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.domain.http_types import Handler, HttpRequest, HttpResponse

COMPRESSION_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("dotserve.compression"), {}
)

GZIP_ENCODING = "gzip"
BROTLI_ENCODING = "br"
BROTLI_QUALITY = 6

# Partial and bodiless responses describe the identity representation.
UNCOMPRESSED_STATUSES = {204, 206, 304}


class GzipStream:
    """Incremental gzip encoder producing a single gzip member."""

    def __init__(self) -> None:
        self._compressor = zlib.compressobj(
            zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, 16 + zlib.MAX_WBITS
        )

    def compress(self, chunk: bytes) -> bytes:
        return self._compressor.compress(chunk)

    def finish(self) -> bytes:
        return self._compressor.flush(zlib.Z_FINISH)


class BrotliStream:
    """Incremental brotli encoder."""

    def __init__(self, quality: int = BROTLI_QUALITY) -> None:
        self._compressor = brotli.Compressor(quality=quality)

    def compress(self, chunk: bytes) -> bytes:
        return self._compressor.process(chunk)

    def finish(self) -> bytes:
        return self._compressor.finish()


Encoder = Union[GzipStream, BrotliStream]


def select_encoding(
    accept_encoding: str, gzip_enabled: bool, brotli_enabled: bool
) -> Optional[str]:
    """Pick the content coding for a request; brotli wins when both are listed."""
    if brotli_enabled and BROTLI_ENCODING in accept_encoding:
        return BROTLI_ENCODING
    if gzip_enabled and GZIP_ENCODING in accept_encoding:
        return GZIP_ENCODING
    return None


def new_encoder(encoding: str) -> Encoder:
    if encoding == BROTLI_ENCODING:
        return BrotliStream()
    return GzipStream()


def compressed_chunks(
    source: Iterable[bytes], encoder: Encoder, encoding: str
) -> Iterator[bytes]:
    """Yield compressed output for every source chunk, then the trailing frame.

    A failure while finalizing is logged and ends the stream; the client sees
    a truncated body instead of a failed request.
    """
    for chunk in source:
        if not chunk:
            continue
        output = encoder.compress(chunk)
        if output:
            yield output

    try:
        trailer = encoder.finish()
    except (zlib.error, brotli.error) as error:
        COMPRESSION_LOGGER.error(
            "Failed to finalize compressed stream",
            extra={
                "event": "compression_finalize_failed",
                "encoding": encoding,
                "error_type": type(error).__name__,
            },
        )
        return
    if trailer:
        yield trailer


def compress_response(response: HttpResponse, encoding: str) -> HttpResponse:
    """Rewrite a response so its body is streamed through the chosen encoder."""
    source = response.body_iter if response.body_iter is not None else [response.body]
    response.headers.pop("Content-Length", None)
    response.headers["Content-Encoding"] = encoding
    response.headers["Vary"] = "Accept-Encoding"
    response.body = b""
    response.body_iter = compressed_chunks(source, new_encoder(encoding), encoding)
    response.use_chunked = True
    return response


class CompressionMiddleware:
    """Compress inner responses when the client accepts an enabled encoding."""

    name = "compression"

    def __init__(
        self, inner: Handler, gzip_enabled: bool = True, brotli_enabled: bool = True
    ) -> None:
        self.inner = inner
        self.gzip_enabled = gzip_enabled
        self.brotli_enabled = brotli_enabled

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if request.is_conditional():
            return self.inner(request)

        encoding = select_encoding(
            request.headers.get("accept-encoding", ""),
            self.gzip_enabled,
            self.brotli_enabled,
        )
        if encoding is None:
            return self.inner(request)

        response = self.inner(request)
        if response.status_code in UNCOMPRESSED_STATUSES:
            return response
        COMPRESSION_LOGGER.debug(
            "Compressing response",
            extra={"event": "response_compressed", "encoding": encoding},
        )
        return compress_response(response, encoding)
