"""
Error types raised by vertexhub commands.

Commands raise these; the CLI boundary renders the message and hint and
maps them to exit code 1.
"""


class VertexHubError(Exception):
    """Base error with optional remediation text shown below the message."""

    def __init__(self, message: str, *, hint: str | None = None):
        super().__init__(message)
        self.hint = hint


class MissingDependencyError(VertexHubError):
    """A required directory, script or executable is not installed."""


class ProxyStartError(VertexHubError):
    """The proxy could not be spawned or never became healthy."""


class ProxyUnavailableError(VertexHubError):
    """A command needs the proxy but it is not running."""


class SubprocessFailedError(VertexHubError):
    """A forwarded subprocess exited with a non-zero code."""

    def __init__(self, message: str, returncode: int, *, hint: str | None = None):
        super().__init__(message, hint=hint)
        self.returncode = returncode
