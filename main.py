"""Serve a directory over HTTP with optional compression, auth and tunneling."""

import sys
from typing import Optional

from dotserve.app import Application
from dotserve.bootstrap.config import ConfigError, build_config, parse_cli_args
from dotserve.bootstrap.logging_setup import configure_logging
from dotserve.bootstrap.secret import SecretError, read_secret
from dotserve.lifecycle.tunnel import TunnelError


def main(argv: Optional[list[str]] = None) -> int:
    """Run the server until a termination signal arrives; return the exit status."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    logger = configure_logging(
        args.log_level, args.log_destination, use_json=args.log_format == "json"
    )

    try:
        secret = read_secret() if args.password_stdin else None
        config = build_config(args, secret)
    except (ConfigError, SecretError) as error:
        logger.critical("Startup failed: %s", error, extra={"event": "startup_failed"})
        return 1

    app = Application(config)
    app.install_signal_handlers()
    try:
        app.start()
    except (OSError, TunnelError) as error:
        logger.critical("Startup failed: %s", error, extra={"event": "startup_failed"})
        app.shutdown()
        return 1

    app.wait_for_shutdown_signal()
    app.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
