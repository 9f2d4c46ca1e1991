"""Модели событий Artemis."""
from apps.backend.models.events import EventRecord, NotificationEnvelope, RequestLogEntry

__all__ = [
    "EventRecord",
    "NotificationEnvelope",
    "RequestLogEntry",
]
