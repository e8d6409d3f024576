"""Exception types raised across the client."""

from enum import Enum
from typing import Optional


class SqlConsoleError(Exception):
    """Base class for all client errors."""


class FailureKind(str, Enum):
    NETWORK = "network"
    REJECTED = "rejected"
    MALFORMED = "malformed"


class TransportError(SqlConsoleError):
    """A remote operation did not produce a usable response.

    ``kind`` separates "the server was unreachable" (network) from
    "the server said no" (rejected) and "the server answered with
    something we cannot read" (malformed).
    """

    def __init__(
        self,
        message: str,
        kind: FailureKind = FailureKind.REJECTED,
        operation: str = "",
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.operation = operation
        self.status_code = status_code

    @property
    def is_network(self) -> bool:
        return self.kind is FailureKind.NETWORK


class RemoteInvariantError(SqlConsoleError):
    """The service answered successfully but broke a contract we rely on."""


class StaleResponseError(SqlConsoleError):
    """A response arrived after the dataset it belonged to was replaced or cleared."""


class ControlBusyError(SqlConsoleError):
    """The control that triggers an operation already has one in flight."""

    def __init__(self, control: str):
        super().__init__(f"A {control} is already in progress")
        self.control = control


class DatasetNotLoadedError(SqlConsoleError):
    """An operation needs a loaded dataset and none is present."""
