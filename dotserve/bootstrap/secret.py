"""Reading the Basic authentication secret before serving starts."""

import getpass
import sys
from typing import Optional, TextIO

PROMPT = "Specify a password for authentication: "


class SecretError(Exception):
    """Raised when the authentication secret cannot be obtained."""


def read_secret(stream: Optional[TextIO] = None, prompt: str = PROMPT) -> str:
    """Read the secret from a terminal without echo, or from piped input.

    Piped input contributes its first line with the line terminator removed.
    """
    stream = sys.stdin if stream is None else stream
    try:
        if stream.isatty():
            secret = getpass.getpass(prompt)
        else:
            line = stream.readline()
            if not line:
                raise SecretError("no input available on stdin")
            secret = line.rstrip("\r\n")
    except (OSError, EOFError) as error:
        raise SecretError(f"failed to read from stdin: {error}") from error

    if not secret:
        raise SecretError("an empty value cannot be used for authentication")
    return secret
