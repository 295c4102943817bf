"""Assembly of the request pipeline around the file handler."""

import logging

from dotserve.bootstrap.config import ServeConfig
from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.domain.http_types import Handler
from dotserve.pipeline.authentication import BasicAuthMiddleware
from dotserve.pipeline.compression import CompressionMiddleware
from dotserve.pipeline.request_logging import RequestLoggingMiddleware

PIPELINE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.pipeline"), {})


def build_pipeline(config: ServeConfig, handler: Handler) -> Handler:
    """Wrap ``handler`` as Logging(Compression(Authentication(handler))).

    Each layer is only applied when the configuration enables it.
    """
    pipeline = handler
    if config.auth_enabled:
        pipeline = BasicAuthMiddleware(pipeline, config.username, config.secret)
    if config.gzip_enabled or config.brotli_enabled:
        pipeline = CompressionMiddleware(
            pipeline,
            gzip_enabled=config.gzip_enabled,
            brotli_enabled=config.brotli_enabled,
        )
    if config.logging_enabled:
        pipeline = RequestLoggingMiddleware(pipeline)

    PIPELINE_LOGGER.info(
        "Request pipeline built",
        extra={"event": "pipeline_built", "layers": describe_pipeline(pipeline)},
    )
    return pipeline


def describe_pipeline(pipeline: Handler) -> list[str]:
    """List layer names from the outermost middleware to the terminal handler."""
    layers = []
    current = pipeline
    while current is not None:
        layers.append(getattr(current, "name", type(current).__name__))
        current = getattr(current, "inner", None)
    return layers
