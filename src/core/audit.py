"""Best-effort audit logging.

Audit writes must never change the outcome of the operation being audited,
so the swallow-on-failure rule lives here and nowhere else.
"""

from __future__ import annotations

import functools
import logging
import uuid
from typing import Any, Callable, Optional

from core.models import ENTITY_MEDIA_MESSAGE, EVENT_FAILURE, EVENT_SUCCESS, AuditEvent
from core.ports import AuditSinkPort

LOGGER = logging.getLogger(__name__)


def new_correlation_id() -> str:
    return str(uuid.uuid4())


class AuditLog:
    """Fire-and-forget recorder in front of an audit sink."""

    def __init__(self, sink: AuditSinkPort) -> None:
        self._sink = sink

    def record(self, event: AuditEvent) -> None:
        """Append an event; failures are logged and dropped."""

        try:
            self._sink.append_event(event)
        except Exception as exc:
            LOGGER.warning(
                "Failed to log audit event %s for %s: %s",
                event.event_type,
                event.entity_id,
                exc,
            )

    def event(
        self,
        event_type: str,
        entity_id: str,
        correlation_id: str,
        details: Optional[dict[str, Any]] = None,
        *,
        entity_type: str = ENTITY_MEDIA_MESSAGE,
        error: Optional[BaseException] = None,
    ) -> None:
        """Build and record an event in one call."""

        self.record(
            AuditEvent(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                correlation_id=correlation_id,
                details=details or {},
                status=EVENT_FAILURE if error is not None else EVENT_SUCCESS,
                error_message=str(error) if error is not None else None,
            )
        )

    def timeline(self, correlation_id: str) -> list[AuditEvent]:
        """Return the events of one attempt in the order they were written."""

        return self._sink.list_events(correlation_id)


def audited(event_type: str) -> Callable:
    """Audit a queue transition method.

    The wrapped method must take ``queue_id`` as its first argument, and the
    owning object must expose ``_audit`` (an AuditLog) and
    ``_audit_subject(queue_id, result)`` returning ``(entity_id, details)``.
    A success event is written with the method's result, a failure event
    with the raised error, which is then re-raised.
    """

    def subject(owner: Any, queue_id: str, result: Any) -> tuple[str, dict[str, Any]]:
        # Resolving the subject reads storage; that read is part of auditing
        # and falls under the same never-raise rule.
        try:
            return owner._audit_subject(queue_id, result)
        except Exception as exc:
            LOGGER.warning("Failed to resolve audit subject for queue item %s: %s", queue_id, exc)
            return queue_id, {"queue_id": queue_id}

    def decorator(method: Callable) -> Callable:
        @functools.wraps(method)
        def wrapper(self, queue_id: str, *args: Any, **kwargs: Any) -> Any:
            correlation_id = new_correlation_id()
            try:
                result = method(self, queue_id, *args, **kwargs)
            except Exception as exc:
                entity_id, details = subject(self, queue_id, None)
                self._audit.event(f"{event_type}_failed", entity_id, correlation_id, details, error=exc)
                raise
            entity_id, details = subject(self, queue_id, result)
            self._audit.event(event_type, entity_id, correlation_id, details)
            return result

        return wrapper

    return decorator
