"""Exceptions raised across the sync pipeline.

Record-level errors (`UserParseError` and subclasses) exclude a single source
record from a pass. Provider errors are raised by a `DirectoryClient` and are
caught per item by the apply engine. `SourceError` aborts a single source and
`ConfigError` aborts the whole pass.
"""

from enum import IntEnum


class IdsyncError(Exception):
    """Base exception for idsync."""


class ConfigError(IdsyncError):
    """Configuration is missing or invalid."""


class SourceError(IdsyncError):
    """A source failed to produce its diff."""


class UserParseError(IdsyncError):
    """A raw source record could not be turned into a user."""


class MissingAttributeError(UserParseError):
    """A required attribute is absent from a source record."""

    def __init__(self, attribute: str, dn: str):
        self.attribute = attribute
        self.dn = dn
        super().__init__(f"missing `{attribute}` values for `{dn}`")


class StatusParseError(UserParseError):
    """The status attribute is not a 32-bit integer."""


class UserNotFoundError(IdsyncError):
    """The provider has no user matching the requested identity."""


class StatusCode(IntEnum):
    """Provider status codes (gRPC numbering, as returned by the management API)."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16

    @classmethod
    def from_value(cls, value: object) -> "StatusCode":
        try:
            return cls(int(value))  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return cls.UNKNOWN


class ProviderError(IdsyncError):
    """Request rejected or failed at the identity provider."""

    def __init__(self, code: StatusCode, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code.name}: {message}")


class ProviderValidationError(ProviderError):
    """The provider rejected the request as invalid."""

    def __init__(self, message: str):
        super().__init__(StatusCode.INVALID_ARGUMENT, message)


class ProviderNotFoundError(ProviderError):
    """The provider reports the addressed resource does not exist."""

    def __init__(self, message: str):
        super().__init__(StatusCode.NOT_FOUND, message)


class ProviderTransportError(ProviderError):
    """The provider could not be reached."""

    def __init__(self, message: str):
        super().__init__(StatusCode.UNAVAILABLE, message)
