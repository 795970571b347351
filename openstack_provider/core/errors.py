"""Error taxonomy shared by the provider core and its backends."""

from __future__ import annotations

import copy


class ProviderError(Exception):
    """Base class for every error raised by the provider."""


class ConfigError(ProviderError):
    """Static provider configuration is invalid."""


class ValidationError(ProviderError):
    """A create request (override document or resulting spec) is invalid."""


class NotFoundError(ProviderError):
    """Zero matches for a scoped lookup."""


class AmbiguousMatchError(ProviderError):
    """More than one match where exactly one was required."""


class WaitTimeoutError(ProviderError, TimeoutError):
    """A bounded status poll exceeded its deadline."""


class InstanceErrorState(ProviderError):
    """The server entered ERROR while waiting for another status."""


class OperationCancelled(ProviderError):
    """The caller cancelled a status poll."""


class RemoteAPIError(ProviderError):
    """Transport or HTTP failure reported by the remote API.

    ``resource_id`` is set when the remote side assigned an ID before failing.
    """

    def __init__(self, message: str, status_code: int | None = None, resource_id: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.resource_id = resource_id


def with_context(exc: ProviderError, message: str) -> ProviderError:
    """Return a copy of ``exc`` with ``message`` prepended, keeping its type."""
    wrapped = copy.copy(exc)
    wrapped.args = (f"{message}: {exc}",)
    return wrapped
