"""In-memory records for Artemis event callbacks (camelCase on the wire, like upstream)."""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class EventRecord(_Record):
    index: int
    event_id: str = ""
    event_type: int = 0
    event_type_name: str = ""
    happen_time: str = ""
    src_index: str = ""
    src_name: str = ""
    src_parent_index: str = ""
    src_type: str = ""
    status: int = 0
    timeout: int = 0
    raw: Any = None


class NotificationEnvelope(_Record):
    method: str = "unknown"
    ability: str = ""
    send_time: str = ""
    events: tuple[EventRecord, ...] = ()
    raw: Any = None


class RequestLogEntry(_Record):
    trace_id: str = ""
    method: str
    path: str
    query: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    raw_body: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    timestamp: str
    protocol: str = "HTTP"
    parsed_event: NotificationEnvelope | None = None
