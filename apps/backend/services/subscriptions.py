"""Event subscription workflows on top of ArtemisClient (no signing here)."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from apps.backend.clients.artemis import (
    ARTEMIS_CODE_OK,
    ArtemisClient,
    ArtemisUpstreamError,
)

logger = logging.getLogger(__name__)


@dataclass
class UnsubscribeAllResult:
    event_types: list[int] = field(default_factory=list)
    response: dict | None = None

    @property
    def nothing_to_do(self) -> bool:
        return not self.event_types


def _upstream_msg(payload: Any) -> str:
    if isinstance(payload, dict):
        msg = payload.get("msg") or payload.get("message") or ""
        return str(msg)[:200] or "no message"
    return (str(payload) if payload else "empty response")[:200]


def _ensure_ok(action: str, status_code: int, payload: Any) -> dict:
    """Return the response envelope or raise ArtemisUpstreamError."""
    if status_code != 200:
        raise ArtemisUpstreamError(
            f"{action} failed: http {status_code}: {_upstream_msg(payload)}",
            code=payload.get("code") if isinstance(payload, dict) else None,
            status_code=status_code,
        )
    if not isinstance(payload, dict):
        raise ArtemisUpstreamError(f"{action} failed: non-JSON response", status_code=status_code)
    code = str(payload.get("code")) if payload.get("code") is not None else None
    if code != ARTEMIS_CODE_OK:
        raise ArtemisUpstreamError(
            f"{action} failed: {_upstream_msg(payload)}",
            code=code,
            status_code=status_code,
        )
    return payload


def collect_event_types(detail: Iterable[Any]) -> list[int]:
    """Distinct eventTypes across all subscription entries, first-seen order."""
    seen: dict[int, None] = {}
    for item in detail or []:
        if not isinstance(item, dict):
            continue
        types = item.get("eventTypes")
        if not isinstance(types, list):
            continue
        for t in types:
            code = _event_type_code(t)
            if code is None:
                logger.warning("artemis subscription view: skipping invalid eventType %r", t)
                continue
            seen.setdefault(code, None)
    return list(seen)


def _event_type_code(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def view(client: ArtemisClient) -> dict:
    status_code, payload = client.subscription_view()
    return _ensure_ok("eventSubscriptionView", status_code, payload)


def subscribe(client: ArtemisClient, event_types: list[int], event_dest: str) -> dict:
    if not event_types:
        raise ValueError("event_types must not be empty")
    if not event_dest:
        raise ValueError("event_dest is required")
    status_code, payload = client.subscribe_by_event_types(event_types, event_dest)
    out = _ensure_ok("eventSubscriptionByEventTypes", status_code, payload)
    logger.info("artemis subscribed event_types=%s event_dest=%s", event_types, event_dest)
    return out


def unsubscribe_all(client: ArtemisClient) -> UnsubscribeAllResult:
    """
    Query current subscriptions, then unsubscribe every event type found.
    Stops at the first failed step with ArtemisUpstreamError.
    """
    listing = view(client)
    data = listing.get("data")
    detail = data.get("detail") if isinstance(data, dict) else None
    if not isinstance(detail, list):
        raise ArtemisUpstreamError(
            "eventSubscriptionView returned no subscription detail",
            code=str(listing.get("code")),
            status_code=200,
        )

    event_types = collect_event_types(detail)
    if not event_types:
        logger.info("artemis unsubscribe_all: no subscriptions")
        return UnsubscribeAllResult()

    logger.info("artemis unsubscribe_all event_types=%s count=%d", event_types, len(event_types))
    status_code, payload = client.unsubscribe_by_event_types(event_types)
    response = _ensure_ok("eventUnSubscriptionByEventTypes", status_code, payload)
    return UnsubscribeAllResult(event_types=event_types, response=response)
