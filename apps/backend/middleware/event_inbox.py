"""Middleware: Artemis event callbacks on /eventRcv. ACK first, parse and store after the response is sent.

The platform treats anything other than a prompt 200 {"code":"0","msg":"success"}
as a failed delivery and starts redelivering, so every outcome on the callback
path (bad body, timeout, client error) still gets the same ACK.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Iterable
from urllib.parse import parse_qs

from starlette.background import BackgroundTask
from starlette.responses import JSONResponse

from apps.backend.middleware.trace_id import ensure_trace_id
from apps.backend.models.events import NotificationEnvelope, RequestLogEntry
from apps.backend.services.event_parser import (
    format_event_summary,
    is_event_notification,
    parse_notification,
)
from apps.backend.services.request_store import RequestStore

logger = logging.getLogger("uvicorn.error")

EVENTS_PATH = "/eventRcv"
EVENTS_PATH_TYPO = "/eventRcvl"
RECEIVE_TIMEOUT_DEFAULT = 30.0

ACK_BODY = {"code": "0", "msg": "success"}
ACK_MEDIA_TYPE = "application/json; charset=utf-8"


class _ReceiveDisconnected(Exception):
    pass


def normalize_path(path: str | None) -> str:
    return (path or "").lower().rstrip("/")


def _scope_headers_to_dict(scope: dict) -> dict[str, str]:
    out = {}
    for raw_k, raw_v in scope.get("headers") or []:
        k = raw_k.decode("latin-1").lower()
        out[k] = raw_v.decode("utf-8", errors="replace")
    return out


def _flatten_qs(parsed: dict[str, list[str]]) -> dict[str, Any]:
    return {k: (v[0] if len(v) == 1 else v) for k, v in parsed.items()}


def _scope_query(scope: dict) -> dict[str, Any]:
    qs = (scope.get("query_string") or b"").decode("utf-8", errors="replace")
    if not qs:
        return {}
    return _flatten_qs(parse_qs(qs, keep_blank_values=True))


def _remote_addr(scope: dict, headers: dict[str, str]) -> str:
    fwd = headers.get("x-forwarded-for")
    if fwd:
        return fwd
    client = scope.get("client")
    return client[0] if client else "unknown"


def ack_response(background: BackgroundTask | None = None) -> JSONResponse:
    return JSONResponse(
        ACK_BODY,
        status_code=200,
        media_type=ACK_MEDIA_TYPE,
        headers={"Connection": "close"},
        background=background,
    )


def decode_body(text: str, trace_id: str = "") -> tuple[Any, NotificationEnvelope | None]:
    """
    Body value for the log entry: JSON if it parses, else strict urlencoded form,
    else the raw text. Returns (body, envelope); envelope only for OnEventNotify.
    """
    if not text:
        return text, None
    try:
        parsed = json.loads(text)
    except ValueError as e:
        logger.info("artemis_inbox json parse failed trace_id=%s error=%s", trace_id, e)
        try:
            return _flatten_qs(parse_qs(text, keep_blank_values=True, strict_parsing=True)), None
        except ValueError:
            return text, None

    if is_event_notification(parsed):
        envelope = parse_notification(parsed)
        for line in format_event_summary(envelope):
            logger.info("artemis_event trace_id=%s %s", trace_id, line)
        return parsed, envelope

    if isinstance(parsed, dict) and isinstance(parsed.get("params"), dict):
        events = parsed["params"].get("events")
        if events is not None:
            count = len(events) if isinstance(events, list) else 1
            logger.info(
                "artemis_inbox non-notify payload trace_id=%s method=%s events=%d",
                trace_id, parsed.get("method"), count,
            )
    return parsed, None


def build_request_entry(scope: dict, body_bytes: bytes | None, trace_id: str) -> RequestLogEntry:
    headers = _scope_headers_to_dict(scope)
    body: Any = None
    raw_body: str | None = None
    envelope = None
    if body_bytes is not None:
        raw_body = body_bytes.decode("utf-8", errors="replace")
        body, envelope = decode_body(raw_body, trace_id)
    return RequestLogEntry(
        trace_id=trace_id,
        method=(scope.get("method") or "POST").upper(),
        path=scope.get("path") or "/",
        query=_scope_query(scope),
        body=body,
        raw_body=raw_body,
        headers=headers,
        timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        protocol="HTTPS" if scope.get("scheme") == "https" else "HTTP",
        parsed_event=envelope,
    )


async def _read_body(receive) -> bytes:
    chunks: list[bytes] = []
    more_body = True
    while more_body:
        message = await receive()
        if message.get("type") == "http.disconnect":
            raise _ReceiveDisconnected("client disconnected before body end")
        chunks.append(message.get("body") or b"")
        more_body = message.get("more_body", False)
    return b"".join(chunks)


class ArtemisEventInboxMiddleware:
    """
    ASGI middleware for the event callback path (any method).
    Everything else passes through to the app untouched.
    """

    def __init__(
        self,
        app,
        store: RequestStore,
        paths: Iterable[str] = (EVENTS_PATH, EVENTS_PATH_TYPO),
        receive_timeout: float = RECEIVE_TIMEOUT_DEFAULT,
    ):
        self.app = app
        self.store = store
        self.paths = frozenset(normalize_path(p) for p in paths)
        self.receive_timeout = receive_timeout

    def matches(self, path: str | None) -> bool:
        return normalize_path(path) in self.paths

    async def __call__(self, scope: dict, receive, send):
        if scope.get("type") != "http" or not self.matches(scope.get("path")):
            await self.app(scope, receive, send)
            return

        trace_id = ensure_trace_id(scope)
        method = (scope.get("method") or "").upper()
        headers = _scope_headers_to_dict(scope)
        logger.info(
            "artemis_inbox %s %s trace_id=%s from=%s ua=%s",
            method, scope.get("path"), trace_id,
            _remote_addr(scope, headers), headers.get("user-agent", "unknown"),
        )

        if method != "POST":
            logger.info("artemis_inbox non-POST method=%s trace_id=%s", method, trace_id)
            task = BackgroundTask(self._post_process, scope, None, trace_id)
            await ack_response(task)(scope, receive, send)
            return

        try:
            body = await asyncio.wait_for(_read_body(receive), timeout=self.receive_timeout)
        except asyncio.TimeoutError:
            logger.warning("artemis_inbox receive timeout trace_id=%s after=%ss", trace_id, self.receive_timeout)
            await self._ack_quietly(scope, receive, send, trace_id)
            return
        except Exception as e:
            logger.warning("artemis_inbox receive failed trace_id=%s error=%s", trace_id, e)
            await self._ack_quietly(scope, receive, send, trace_id)
            return

        logger.info("artemis_inbox body received trace_id=%s bytes=%d", trace_id, len(body))
        task = BackgroundTask(self._post_process, scope, body, trace_id)
        await ack_response(task)(scope, receive, send)

    async def _ack_quietly(self, scope: dict, receive, send, trace_id: str) -> None:
        try:
            await ack_response()(scope, receive, send)
        except Exception as e:
            logger.warning("artemis_inbox ack not delivered trace_id=%s error=%s", trace_id, e)

    async def _post_process(self, scope: dict, body_bytes: bytes | None, trace_id: str) -> None:
        """Runs after the ACK body went out; nothing waits on it."""
        try:
            entry = build_request_entry(scope, body_bytes, trace_id)
            self.store.add(entry)
        except Exception:
            logger.exception("ARTEMIS_INBOX_STORE_FAILED trace_id=%s", trace_id)
            return
        n_events = len(entry.parsed_event.events) if entry.parsed_event else 0
        logger.info("artemis_inbox stored trace_id=%s events=%d", trace_id, n_events)
