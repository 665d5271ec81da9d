"""
Custom Exception Classes for confsync

Hierarchical exception structure for error handling across the client.

Only ParameterError (and its subclasses) and AccessDenied are raised out of
the public ConfigService operations. NetworkFailure and ServerError are
absorbed into tier fallback or a False result.
"""

# Client-side invalid parameter (matches the server's CLIENT_INVALID_PARAM)
CLIENT_INVALID_PARAM = -400
NO_RIGHT = 403
SERVER_ERROR = 500
CONFLICT = 409


class ConfSyncError(Exception):
    """Base exception for all confsync errors"""

    def __init__(self, message: str, code: int = 0, recoverable: bool = True):
        self.message = message
        self.code = code
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(ConfSyncError):
    """Client configuration errors (bad server address, namespace, timeouts)"""

    def __init__(self, message: str):
        super().__init__(f"Config Error: {message}", CLIENT_INVALID_PARAM, recoverable=False)


class ParameterError(ConfSyncError):
    """Invalid dataId, group, tenant or content. Never retried."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(f"Parameter Error: {message}", CLIENT_INVALID_PARAM, recoverable=False)


class ContentRejectedError(ParameterError):
    """A content filter refused to let the content through"""

    def __init__(self, message: str, filter_name: str | None = None):
        self.filter_name = filter_name
        super().__init__(message, field="content")


class AccessDenied(ConfSyncError):
    """Server answered 403 Forbidden"""

    def __init__(self, message: str = "access denied"):
        super().__init__(f"Access Denied: {message}", NO_RIGHT, recoverable=False)


class NetworkFailure(ConfSyncError):
    """I/O error or timeout talking to the server"""

    def __init__(self, message: str, server: str | None = None):
        self.server = server
        super().__init__(f"Network Failure: {message}", SERVER_ERROR, recoverable=True)


class ServerError(ConfSyncError):
    """Server answered with a non-2xx, non-403 status"""

    def __init__(self, status: int, message: str = ""):
        self.status = status
        detail = f"HTTP {status}" if not message else f"HTTP {status}: {message}"
        super().__init__(f"Server Error: {detail}", status, recoverable=True)
