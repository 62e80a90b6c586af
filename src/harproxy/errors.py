"""Exceptions raised by harproxy."""

from __future__ import annotations


class HarProxyError(Exception):
    """Base class for all harproxy errors."""


class StartupError(HarProxyError):
    """The proxy process could not be spawned or never became ready."""

    def __init__(
        self,
        message: str,
        *,
        output: str = "",
        returncode: int | None = None,
        port: int | None = None,
    ) -> None:
        super().__init__(message)
        self.output: str = output
        self.returncode: int | None = returncode
        self.port: int | None = port

    def __str__(self) -> str:
        message = super().__str__()
        if self.output:
            return f"{message}, output: {self.output}"
        return message


class ControlPlaneError(HarProxyError):
    """A request to the proxy's control plane failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code: int | None = status_code


class HarDeserializationError(HarProxyError):
    """The archive returned by the control plane could not be read."""


class SessionStateError(HarProxyError):
    """An operation was requested in a session state that does not allow it."""
