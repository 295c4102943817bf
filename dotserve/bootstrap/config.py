"""Server configuration, CLI argument parsing and startup validation."""

import argparse
import os
import stat
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotserve.bootstrap.socket_factory import probe_port


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


MAX_BODY_BYTES = _env_int("DOTSERVE_MAX_BODY_BYTES", 64 * 1024)
DEFAULT_SOCKET_TIMEOUT = _env_int("DOTSERVE_SOCKET_TIMEOUT", 60)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_int("DOTSERVE_SHUTDOWN_GRACE_SECONDS", 5)

HEADER_DELIMITER = b"\r\n\r\n"
ALLOWED_METHODS = {"GET", "HEAD"}
AUTH_REALM = "."
TUNNEL_TOKEN_ENV = "NGROK_AUTHTOKEN"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
}


class ConfigError(Exception):
    """Raised when the startup configuration cannot be used."""


@dataclass(frozen=True)
class ServeConfig:
    """Immutable configuration snapshot built once at startup."""

    directory: str
    host: str
    port: int
    username: str
    secret: Optional[str] = field(default=None, repr=False)
    disable_gzip: bool = False
    disable_brotli: bool = False
    disable_logging: bool = False
    enable_tunnel: bool = False
    socket_timeout: int = DEFAULT_SOCKET_TIMEOUT
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS

    @property
    def auth_enabled(self) -> bool:
        return self.secret is not None

    @property
    def gzip_enabled(self) -> bool:
        return not self.disable_gzip

    @property
    def brotli_enabled(self) -> bool:
        return not self.disable_brotli

    @property
    def logging_enabled(self) -> bool:
        return not self.disable_logging


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(
        prog="dotserve", description="Serve a directory over HTTP"
    )
    parser.add_argument("--dir", default=".", help="Set the directory to serve")
    parser.add_argument(
        "--host", default="0.0.0.0", help="Interface to bind (default: all IPv4)"
    )
    parser.add_argument(
        "--port",
        default="0",
        help="Set the port to listen on, use 0 to choose a random port",
    )
    parser.add_argument(
        "--user", default="admin", help="Set the username for basic authentication"
    )
    parser.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password for basic authentication from stdin",
    )
    parser.add_argument(
        "--no-gzip", action="store_true", help="Disable gzip compression"
    )
    parser.add_argument(
        "--no-brotli", action="store_true", help="Disable brotli compression"
    )
    parser.add_argument(
        "--no-logging", action="store_true", help="Disable request logging"
    )
    parser.add_argument(
        "--ngrok",
        action="store_true",
        help=f"Expose the server to the internet using ngrok (reads {TUNNEL_TOKEN_ENV})",
    )
    default_log_level = os.getenv("DOTSERVE_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("DOTSERVE_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default="json",
        choices=["json", "text"],
        help="Structured JSON lines or plain text",
    )
    parser.add_argument(
        "--socket-timeout",
        type=int,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Idle socket timeout in seconds for client connections",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=float,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for graceful shutdown",
    )
    return parser.parse_args(argv)


def validate_directory(directory: str) -> None:
    """Ensure the served directory exists, is a directory and is writable."""
    path = Path(directory)
    try:
        info = path.stat()
    except OSError as error:
        raise ConfigError(f"failed to access the directory {directory}: {error}") from error
    if not stat.S_ISDIR(info.st_mode):
        raise ConfigError(f"{directory} is not a directory")

    try:
        with tempfile.TemporaryFile(dir=path):
            pass
    except OSError as error:
        raise ConfigError(f"directory {directory} is not writable: {error}") from error


def validate_port(port: str, host: str = "0.0.0.0") -> int:
    """Parse the port and make sure it can be bound; 0 is always accepted."""
    if port == "":
        raise ConfigError("port cannot be empty")
    try:
        port_number = int(port)
    except ValueError as error:
        raise ConfigError(f"port must be a number: {port!r}") from error
    if port_number < 0 or port_number > 65535:
        raise ConfigError("port must be in the range 0-65535")

    if port_number != 0:
        try:
            probe_port(host, port_number)
        except OSError as error:
            raise ConfigError(f"port {port_number} cannot be used: {error}") from error
    return port_number


def validate_user(user: str) -> None:
    """Reject usernames Basic authentication cannot carry unambiguously."""
    if user == "":
        raise ConfigError("user cannot be empty")
    if ":" in user:
        raise ConfigError("user cannot contain a colon")
    if user.strip() != user:
        raise ConfigError("user cannot have leading or trailing whitespace")


def build_config(
    args: argparse.Namespace,
    secret: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServeConfig:
    """Validate parsed arguments and freeze them into a ServeConfig."""
    environ = os.environ if environ is None else environ

    try:
        validate_directory(args.dir)
    except ConfigError as error:
        raise ConfigError(f"directory validation failed: {error}") from error
    try:
        port = validate_port(args.port, args.host)
    except ConfigError as error:
        raise ConfigError(f"port validation failed: {error}") from error
    try:
        validate_user(args.user)
    except ConfigError as error:
        raise ConfigError(f"user validation failed: {error}") from error

    if args.ngrok and not environ.get(TUNNEL_TOKEN_ENV):
        raise ConfigError(f"tunneling requires the {TUNNEL_TOKEN_ENV} environment variable")
    if args.socket_timeout <= 0:
        raise ConfigError("socket timeout must be positive")
    if args.shutdown_grace_seconds < 0:
        raise ConfigError("shutdown grace period cannot be negative")

    return ServeConfig(
        directory=str(Path(args.dir).resolve()),
        host=args.host,
        port=port,
        username=args.user,
        secret=secret,
        disable_gzip=args.no_gzip,
        disable_brotli=args.no_brotli,
        disable_logging=args.no_logging,
        enable_tunnel=args.ngrok,
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
    )
