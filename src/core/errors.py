"""Exceptions raised by the core workflow."""


class MediaMatchError(Exception):
    """Base exception for all mediamatch errors."""
    pass


class MessageNotFoundError(MediaMatchError):
    """No media message exists for the given id."""
    pass


class ProcessingConflictError(MediaMatchError):
    """Another processing attempt already holds the message."""
    pass


class QueueError(MediaMatchError):
    """Base exception for approval queue failures."""
    pass


class QueueItemNotFoundError(QueueError):
    """No approval queue item exists for the given id."""
    pass


class QueueStateError(QueueError):
    """The queue item is already resolved and cannot change status."""
    pass


class QueueConflictError(QueueError):
    """A concurrent operation resolved the queue item first."""
    pass
