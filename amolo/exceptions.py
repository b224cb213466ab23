"""
Service error taxonomy and its HTTP status mapping
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    CONFIGURATION = "ConfigurationError"
    AUTH = "AuthError"
    RATE_LIMITED = "RateLimited"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    PROTOCOL = "ProtocolError"
    NOT_FOUND = "NotFound"
    PROVIDER = "ProviderError"


STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFIGURATION: 500,
    ErrorKind.AUTH: 401,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_UNAVAILABLE: 500,
    ErrorKind.PROTOCOL: 500,
    ErrorKind.NOT_FOUND: 404,
}


def status_for(kind: ErrorKind) -> int:
    """HTTP status a given error kind is reported with; ProviderError carries its own"""
    return STATUS_BY_KIND[kind]


class ServiceError(Exception):
    """Base for every error the service reports to its clients"""

    kind: ErrorKind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code if status_code is not None else status_for(self.kind)
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status_code}, {self.message!r})"


class ValidationError(ServiceError):
    """Malformed client input"""
    kind = ErrorKind.VALIDATION


class ConfigurationError(ServiceError):
    """Server is missing required configuration, e.g. the provider credential"""
    kind = ErrorKind.CONFIGURATION


class AuthError(ServiceError):
    """Provider rejected the configured credential"""
    kind = ErrorKind.AUTH


class RateLimited(ServiceError):
    """Local quota or provider quota exceeded"""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message)


class UpstreamUnavailable(ServiceError):
    """Provider could not be reached or answered with a 5xx"""
    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class ProtocolError(ServiceError):
    """Provider answered with a body we cannot interpret"""
    kind = ErrorKind.PROTOCOL


class NotFound(ServiceError):
    kind = ErrorKind.NOT_FOUND


class ProviderError(ServiceError):
    """Any other provider 4xx rejection, relayed with the provider's own status"""
    kind = ErrorKind.PROVIDER

    def __init__(self, message: str, status_code: int):
        super().__init__(message, status_code=status_code)
