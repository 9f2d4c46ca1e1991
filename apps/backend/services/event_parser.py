"""Разбор OnEventNotify: normalize Artemis event callbacks into NotificationEnvelope.

Upstream payloads are loosely structured and some firmware versions misspell
field names, so every lookup goes through FIELD_CANDIDATES (first present wins,
correct spelling first). Nothing here raises on malformed structure.
"""
from typing import Any

from apps.backend.models.events import EventRecord, NotificationEnvelope

NOTIFY_METHOD = "OnEventNotify"

# logical field -> candidate payload keys, preferred first. New typos go here.
FIELD_CANDIDATES: dict[str, tuple[str, ...]] = {
    "event_id": ("eventId",),
    "event_type": ("eventType", "eventiype"),
    "happen_time": ("happenTime", "hapenTime"),
    "src_index": ("srcIndex",),
    "src_name": ("srcName",),
    "src_parent_index": ("srcParentIndex",),
    "src_type": ("srcType", "srciype"),
    "status": ("status",),
    "timeout": ("timeout",),
}

_INT_FIELDS = frozenset({"event_type", "status", "timeout"})

EVENT_TYPE_NAMES: dict[int, str] = {
    131329: "Intelligent analysis event",
    131331: "Intelligent analysis event",
    196893: "Intelligent analysis event",
}


def event_type_name(code: Any) -> str:
    try:
        key = int(code)
    except (TypeError, ValueError):
        key = None
    if key is not None and key in EVENT_TYPE_NAMES:
        return EVENT_TYPE_NAMES[key]
    return f"unknown event type ({code})"


def _resolve(obj: dict, field: str) -> Any:
    for key in FIELD_CANDIDATES[field]:
        val = obj.get(key)
        if val is not None and val != "":
            return val
    return None


def _as_int(val: Any) -> int:
    if val is None or isinstance(val, bool):
        return 0
    try:
        return int(val)
    except (TypeError, ValueError):
        try:
            return int(float(val))
        except (TypeError, ValueError, OverflowError):
            return 0
    except OverflowError:
        return 0


def _as_str(val: Any) -> str:
    if val is None:
        return ""
    return val if isinstance(val, str) else str(val)


def parse_event(event: Any, index: int) -> EventRecord:
    obj = event if isinstance(event, dict) else {}
    values: dict[str, Any] = {}
    for field in FIELD_CANDIDATES:
        raw = _resolve(obj, field)
        values[field] = _as_int(raw) if field in _INT_FIELDS else _as_str(raw)
    return EventRecord(
        index=index,
        event_type_name=event_type_name(values["event_type"]),
        raw=event,
        **values,
    )


def _events_list(events: Any) -> list[Any]:
    if isinstance(events, list):
        return events
    if isinstance(events, dict):
        return [events]
    return []


def parse_notification(payload: Any) -> NotificationEnvelope:
    """Build an envelope from an already JSON-decoded callback body."""
    data = payload if isinstance(payload, dict) else {}
    params = data.get("params")
    if not isinstance(params, dict):
        params = {}
    events = tuple(
        parse_event(ev, i) for i, ev in enumerate(_events_list(params.get("events")), start=1)
    )
    return NotificationEnvelope(
        method=_as_str(data.get("method")) or "unknown",
        ability=_as_str(data.get("ability")),
        send_time=_as_str(params.get("sendTime")),
        events=events,
        raw=payload,
    )


def is_event_notification(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("method") == NOTIFY_METHOD


def format_event_summary(envelope: NotificationEnvelope) -> list[str]:
    lines = [
        f"method={envelope.method} ability={envelope.ability} "
        f"send_time={envelope.send_time} events={len(envelope.events)}"
    ]
    for ev in envelope.events:
        lines.append(
            f"  event#{ev.index} id={ev.event_id} type={ev.event_type} ({ev.event_type_name}) "
            f"happen_time={ev.happen_time} src={ev.src_name} src_index={ev.src_index} "
            f"src_parent={ev.src_parent_index} src_type={ev.src_type} "
            f"status={ev.status} timeout={ev.timeout}s"
        )
    return lines
