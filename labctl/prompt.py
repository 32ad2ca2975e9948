import getpass
from typing import Optional

from labctl.errors import UsageError


def read_secret(value: Optional[str], prompt: str = "Enter password: ") -> str:
    """
    Return the secret given on the command line, or read it from the
    controlling terminal without echo.
    """
    if value:
        return value

    try:
        secret = getpass.getpass(prompt)
    except EOFError as e:
        raise UsageError("error reading password") from e

    if not secret:
        raise UsageError("password is required")
    return secret
