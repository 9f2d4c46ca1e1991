"""Debug viewer over the request store: HTML page (auto refresh) and JSON listing."""
import html
import json
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from apps.backend.deps import get_request_store
from apps.backend.models.events import EventRecord, RequestLogEntry
from apps.backend.services.request_store import RequestStore

router = APIRouter()

REFRESH_MS = 2000

_PAGE_STYLE = """
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body { font-family: system-ui, Arial, sans-serif; padding: 20px; background: #f5f5f5; }
    h1 { margin-bottom: 20px; color: #333; }
    .request-item { background: #fff; margin-bottom: 15px; padding: 15px; border-radius: 5px;
                    box-shadow: 0 1px 3px rgba(0,0,0,0.1); }
    .request-header { display: flex; gap: 10px; margin-bottom: 10px; padding-bottom: 10px;
                      border-bottom: 1px solid #eee; }
    .method { background: #007bff; color: #fff; padding: 3px 8px; border-radius: 3px; font-size: 12px; }
    .protocol { background: #28a745; color: #fff; padding: 3px 8px; border-radius: 3px; font-size: 11px; }
    .path { color: #666; font-family: monospace; }
    .time { color: #999; font-size: 12px; margin-left: auto; }
    .section { margin-top: 10px; }
    .parsed-event { background: #e7f3ff; padding: 15px; border-radius: 5px; border-left: 4px solid #007bff; }
    .event-detail { margin-top: 15px; padding: 15px; background: #fff; border: 1px solid #ddd; border-radius: 5px; }
    .event-detail td { padding: 6px; border-bottom: 1px solid #eee; font-family: monospace; }
    .event-detail td:first-child { font-weight: bold; width: 140px; color: #666; font-family: inherit; }
    pre { background: #f8f8f8; padding: 10px; border-radius: 3px; overflow-x: auto; font-size: 13px; }
    .empty { text-align: center; color: #999; padding: 40px; }
"""


def _e(value: Any) -> str:
    return html.escape("" if value is None else str(value))


def _pretty(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        return str(value)


def _compact(value: Any) -> str | None:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return None


def _render_event(ev: EventRecord) -> str:
    rows = [
        ("Event ID", ev.event_id),
        ("Event type", f"{ev.event_type} ({ev.event_type_name})"),
        ("Happen time", ev.happen_time),
        ("Source name", ev.src_name),
        ("Source index", ev.src_index),
        ("Source type", ev.src_type),
        ("Parent index", ev.src_parent_index),
        ("Status", ev.status),
        ("Timeout", f"{ev.timeout}s"),
    ]
    cells = "".join(f"<tr><td>{_e(k)}</td><td>{_e(v)}</td></tr>" for k, v in rows)
    return f'<div class="event-detail"><h4>Event {ev.index}</h4><table>{cells}</table></div>'


def _render_entry(entry: RequestLogEntry) -> str:
    parts = [
        '<div class="request-item"><div class="request-header">'
        f'<span class="method">{_e(entry.method)}</span>'
        f'<span class="path">{_e(entry.path)}</span>'
        f'<span class="protocol">{_e(entry.protocol)}</span>'
        f'<span class="time">{_e(entry.timestamp)}</span></div>'
    ]
    env = entry.parsed_event
    if env is not None and env.events:
        parts.append(
            '<div class="section parsed-event"><strong>Parsed event notification</strong>'
            f"<div>Method: {_e(env.method)} | Ability: {_e(env.ability)} | "
            f"Send time: {_e(env.send_time)} | Events: {len(env.events)}</div>"
            + "".join(_render_event(ev) for ev in env.events)
            + "</div>"
        )
    if entry.query:
        parts.append(f'<div class="section"><strong>Query</strong><pre>{_e(_pretty(entry.query))}</pre></div>')
    if entry.body not in (None, ""):
        parts.append(f'<div class="section"><strong>Body</strong><pre>{_e(_pretty(entry.body))}</pre></div>')
    if entry.raw_body and not isinstance(entry.body, str) and _compact(entry.body) != entry.raw_body:
        parts.append(f'<div class="section"><strong>Raw body</strong><pre>{_e(entry.raw_body)}</pre></div>')
    parts.append("</div>")
    return "".join(parts)


def render_page(entries: tuple[RequestLogEntry, ...]) -> str:
    items = "".join(_render_entry(e) for e in entries) or '<div class="empty">No requests yet</div>'
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Artemis event inbox</title>
  <style>{_PAGE_STYLE}</style>
</head>
<body>
  <h1>Artemis event inbox</h1>
  <div id="requests">{items}</div>
  <script>setTimeout(function () {{ location.reload(); }}, {REFRESH_MS});</script>
</body>
</html>"""


@router.get("/", response_class=HTMLResponse)
def viewer_page(store: RequestStore = Depends(get_request_store)):
    return HTMLResponse(render_page(store.snapshot()))


@router.get("/requests")
def list_requests(store: RequestStore = Depends(get_request_store)):
    entries = store.snapshot()
    return {"count": len(entries), "items": [e.to_json_dict() for e in entries]}
