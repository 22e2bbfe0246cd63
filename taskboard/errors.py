"""Exception hierarchy shared by the services and the HTTP layer."""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for failures raised by the domain services.

    Anything not covered by a more specific subclass is reported to clients
    as a generic server error.
    """

    status_code = 500


class AuthenticationError(ServiceError):
    """The bearer credential is missing, malformed, expired or forged."""

    status_code = 401


class InvalidCredentialsError(ServiceError):
    """Login was attempted with an unknown email or the wrong password."""

    status_code = 400


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


__all__ = [
    "AuthenticationError",
    "InvalidCredentialsError",
    "NotFoundError",
    "PermissionDeniedError",
    "ServiceError",
]
