"""
Error types raised by labctl. Every command failure surfaces as one of these
and is turned into a non-zero exit status by the CLI entrypoint.
"""


class LabctlError(Exception):
    """
    Base class for all labctl errors.
    """


class UsageError(LabctlError):
    """
    Missing or invalid command input, reported before any network call.
    """


class TransportError(LabctlError):
    """
    The HTTP request could not be completed (connection refused, timeout,
    malformed URL, ...).
    """


class RemoteError(LabctlError):
    """
    The service answered with a structured ``{code, error}`` failure.
    """

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"remote error: {message} ({code})")


class StatusError(LabctlError):
    """
    The service answered with a non-2xx status and a body that is not JSON.
    """

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"unexpected status: {status}")


class DecodeError(LabctlError):
    """
    A response body did not have the expected shape.
    """


class ConfigError(LabctlError):
    """
    The local configuration store could not be read or written.
    """


class RootCertError(LabctlError):
    """
    The Fulcio root of trust could not be loaded.
    """


class CommandError(LabctlError):
    """
    An external tool (docker, oras, cosign) exited with a failure.
    """

    def __init__(self, tool: str, code: int, stderr: str = "") -> None:
        self.tool = tool
        self.code = code
        self.stderr = stderr
        message = f"{tool} failed (exit={code})"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)
