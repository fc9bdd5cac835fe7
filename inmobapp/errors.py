"""
Error taxonomy shared by the fetch client and the inspection store.
Callers pattern-match on `kind` instead of parsing messages.
"""


class InmobAppError(Exception):
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ApiError(InmobAppError):
    """Base for every failure surfaced by the fetch client."""
    kind = "api"


class ApiTimeout(ApiError):
    kind = "timeout"


class NetworkError(ApiError):
    kind = "network"


class ServerError(ApiError):
    kind = "server"

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class LogicError(ApiError):
    """HTTP 200 with `ok: false` in the body."""
    kind = "logic"

    def __init__(self, message: str, body: dict | None = None):
        super().__init__(message)
        self.body = body or {}


class ValidationError(InmobAppError):
    """Local input rejected before any network call."""
    kind = "validation"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConfigurationError(InmobAppError):
    kind = "configuration"
