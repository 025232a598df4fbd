"""Error taxonomy shared by the dispatch API and the worker pool."""
from enum import Enum


class DispatchErrorCode(str, Enum):
    """Producer-facing error codes, returned (never raised) by dispatch()."""

    INVALID_REQUEST = "InvalidRequest"
    NO_ACTIVE_CHANNEL = "NoActiveChannel"
    QUEUE_PERSIST_FAILURE = "QueuePersistFailure"


class NotifierError(Exception):
    """Base class for notifier errors."""


class QueuePersistError(NotifierError):
    """The queue store could not durably persist a job."""


class ModuleHierarchyError(NotifierError, ValueError):
    """Module registry invariant violated (unknown parent, self-reference or cycle)."""


class ChannelSendError(NotifierError):
    """
    A single channel send failed.

    Never propagates past the worker: it only counts as a failed channel for
    the current attempt. `retry_after` carries a provider rate-limit hint in
    seconds, `retryable=False` marks errors a retry is unlikely to fix
    (revoked token, bot kicked from chat) so they can be logged louder.
    """

    def __init__(self, reason: str, *, retryable: bool = True, retry_after: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.retryable = retryable
        self.retry_after = retry_after
