"""Error taxonomy shared by the watch manager, validator and delivery pipeline."""

from __future__ import annotations


class RelayError(Exception):
    pass


# -------------------- Validation --------------------


class ValidationError(RelayError):
    """A callback (or derived value) failed a precondition; never retried."""

    status = 400

    def __init__(self, header: str, message: str) -> None:
        super().__init__(message)
        self.header = header
        self.message = message


class MissingHeaderError(ValidationError):
    def __init__(self, header: str, value: str | None = None) -> None:
        super().__init__(header, f"{header} is missing: {value!r}")


class InvalidHeaderError(ValidationError):
    def __init__(self, header: str, value: str | None, reason: str) -> None:
        super().__init__(header, f"{header} is invalid ({reason}): {value!r}")


class ChannelTokenMismatch(ValidationError):
    status = 401

    def __init__(self, header: str) -> None:
        super().__init__(header, f"{header} does not match the configured secret")


class UnknownResourceState(ValidationError):
    def __init__(self, header: str, value: str | None) -> None:
        super().__init__(header, f"{header} is not sync or exists: {value!r}")


class SubscriptionExpiredError(ValidationError):
    def __init__(self, header: str, ttl_ms: int) -> None:
        super().__init__(header, f"{header} is already in the past (ttl {ttl_ms} ms)")
        self.ttl_ms = ttl_ms


# -------------------- Collaborators --------------------


class NotFoundError(RelayError):
    """The provider or the store reports the entity as absent."""


class UpstreamError(RelayError):
    """A provider or chat-bot call failed for any reason other than not-found."""

    def __init__(self, service: str, message: str, *, status: int | None = None) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status = status


class CursorExpiredError(UpstreamError):
    """The provider no longer accepts the stored sync token (HTTP 410)."""


class StoreError(RelayError):
    pass


class RecordError(RelayError):
    """A stored record or provider payload failed strict parsing."""


class ConsistencyWarning(UserWarning):
    """Category bound to log records where store state disagrees with what the manager expected.

    Only ever logged through loguru; never raised or issued via ``warnings``.
    """
