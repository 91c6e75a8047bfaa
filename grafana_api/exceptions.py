"""
Grafana API client exceptions.

This module defines all custom exceptions used throughout the library.
"""

from typing import Optional


class GrafanaAPIError(Exception):
    """Base exception for Grafana API errors"""

    def __init__(self, reason: str = "", code: Optional[int] = None, *args):
        super().__init__(reason, *args)
        self.reason = reason
        self.code = code

    def __str__(self) -> str:
        if self.code is None:
            return self.reason
        return f"{self.reason} (code {self.code})"


class GrafanaNotConnectedError(GrafanaAPIError):
    """Raised when an operation needs a ready connection and there isn't one"""
    pass


class GrafanaInvalidArgumentError(GrafanaAPIError):
    """Raised when an operation is called with malformed arguments"""
    pass


class GrafanaMalformedMessageError(GrafanaAPIError):
    """Raised when an inbound frame can't be decoded"""
    pass


class GrafanaProtocolViolationError(GrafanaAPIError):
    """Raised on an unknown opcode or an out-of-sequence handshake"""
    pass


class GrafanaConnectionError(GrafanaAPIError):
    """Raised on a transport error or an abnormal close"""
    pass


class GrafanaEvalTimeoutError(GrafanaAPIError):
    """Raised when a remote eval reply doesn't arrive in time"""
    pass


class GrafanaConfigurationError(GrafanaAPIError):
    """Raised when configuration is invalid"""
    pass
