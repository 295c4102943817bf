"""HTTP Basic authentication middleware."""

import base64
import binascii
import logging
from typing import Optional

from dotserve.bootstrap.config import AUTH_REALM, SECURITY_HEADERS
from dotserve.domain.constant_time import constant_time_compare, constant_time_eq
from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.domain.http_types import Handler, HttpRequest, HttpResponse
from dotserve.domain.response_builders import unauthorized_response

AUTH_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.auth"), {})

BASIC_SCHEME = "basic"


def parse_basic_credentials(header: Optional[str]) -> Optional[tuple[bytes, bytes]]:
    """Decode an ``Authorization: Basic`` value into (username, secret).

    The scheme is matched case-insensitively and the decoded pair is split at
    the first colon. Returns None for anything that is not a well formed
    Basic credential.
    """
    if not header:
        return None
    scheme, _, encoded = header.strip().partition(" ")
    if scheme.lower() != BASIC_SCHEME or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None

    username, separator, secret = decoded.partition(b":")
    if not separator:
        return None
    return username, secret


class BasicAuthMiddleware:
    """Reject requests whose Basic credentials do not match the configured pair."""

    name = "authentication"

    def __init__(
        self, inner: Handler, username: str, secret: str, realm: str = AUTH_REALM
    ) -> None:
        self.inner = inner
        self.realm = realm
        self._username = username.encode()
        self._secret = secret.encode()

    def __repr__(self) -> str:
        return f"BasicAuthMiddleware(realm={self.realm!r})"

    def _matches(self, username: bytes, secret: bytes) -> bool:
        # Every check runs; results are only combined at the end.
        verdict = (
            constant_time_eq(len(username), len(self._username))
            & constant_time_eq(len(secret), len(self._secret))
            & constant_time_compare(username, self._username)
            & constant_time_compare(secret, self._secret)
        )
        return verdict == 1

    def __call__(self, request: HttpRequest) -> HttpResponse:
        credentials = parse_basic_credentials(request.headers.get("authorization"))
        if credentials is None or not self._matches(*credentials):
            AUTH_LOGGER.warning(
                "Unauthorized access attempt",
                extra={"event": "auth_failed", "client": request.client},
            )
            return unauthorized_response(request, self.realm, SECURITY_HEADERS)

        AUTH_LOGGER.debug(
            "Authorized request",
            extra={"event": "auth_succeeded", "client": request.client},
        )
        return self.inner(request)
