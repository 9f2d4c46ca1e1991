"""Artemis OpenAPI client (event subscriptions). Logs never include app_secret or signatures."""
from __future__ import annotations

import json
import logging
import secrets
import time
from typing import Any
from urllib.parse import urlsplit

import httpx

from apps.backend.config import Settings, require_credentials
from apps.backend.utils.artemis_signing import (
    SigningContext,
    compute_content_md5,
    sign_request,
)

logger = logging.getLogger(__name__)

EVENT_SERVICE_PREFIX = "/api/eventService/v1"
EVENT_SUBSCRIBE = "eventSubscriptionByEventTypes"
EVENT_SUBSCRIPTION_VIEW = "eventSubscriptionView"
EVENT_UNSUBSCRIBE = "eventUnSubscriptionByEventTypes"

ACCEPT = "*/*"
CONTENT_TYPE_JSON = "application/json"

ARTEMIS_CODE_OK = "0"


class ArtemisError(Exception):
    """Base error for outbound Artemis calls."""


class ArtemisTransportError(ArtemisError):
    """DNS/TCP/TLS/timeout failure before a response was received."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"transport error calling {url}: {reason}")
        self.url = url
        self.reason = reason


class ArtemisUpstreamError(ArtemisError):
    """The call completed but the platform reported failure."""

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


def _now_millis() -> str:
    return str(int(time.time() * 1000))


def _new_nonce() -> str:
    return secrets.token_hex(16)


def _encode_body(body: Any) -> bytes:
    """Compact JSON, the same bytes are digested, measured and sent."""
    return json.dumps(body if body is not None else {}, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _parse_response(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text


class ArtemisClient:
    """Signed calls against one Artemis gateway.

    Every call gets a fresh X-Ca-Timestamp and X-Ca-Nonce. One attempt per call:
    transport failures raise ArtemisTransportError, everything else is returned
    as (http_status, parsed_json_or_text).
    """

    def __init__(
        self,
        base_url: str,
        app_key: str,
        app_secret: str,
        verify_tls: bool = True,
        timeout_sec: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.app_key = app_key
        self._app_secret = app_secret
        self.verify_tls = verify_tls
        self.timeout_sec = timeout_sec
        self._transport = transport
        if not verify_tls:
            logger.warning("artemis TLS certificate verification DISABLED base_url=%s", self.base_url)

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.BaseTransport | None = None) -> "ArtemisClient":
        app_key, app_secret = require_credentials(settings)
        return cls(
            settings.artemis_base_url,
            app_key,
            app_secret,
            verify_tls=settings.artemis_verify_tls,
            timeout_sec=settings.artemis_timeout_seconds,
            transport=transport,
        )

    def event_service_url(self, action: str) -> str:
        return f"{self.base_url}{EVENT_SERVICE_PREFIX}/{action}"

    def build_headers(self, method: str, url: str, body_bytes: bytes) -> dict[str, str]:
        """Assemble the full signed header set for one request."""
        parts = urlsplit(url)
        content_md5 = compute_content_md5(body_bytes)
        headers = {
            "Accept": ACCEPT,
            "Content-Type": CONTENT_TYPE_JSON,
            "Content-MD5": content_md5,
            "X-Ca-Key": self.app_key,
            "X-Ca-Timestamp": _now_millis(),
            "X-Ca-Nonce": _new_nonce(),
        }
        ctx = SigningContext(
            method=method,
            path=parts.path or "/",
            query=parts.query,
            headers=headers,
            content_md5=content_md5,
        )
        signature = sign_request(ctx, self._app_secret)
        logger.debug(
            "artemis signing path=%s signed_headers=%s signing_string=%r",
            ctx.path, ",".join(signature.signed_headers), signature.signing_string,
        )
        headers.update(signature.as_headers())
        headers["Content-Length"] = str(len(body_bytes))
        return headers

    def call(self, url: str, body: Any = None, method: str = "POST") -> tuple[int, Any]:
        if not url.startswith(("http://", "https://")):
            url = f"{self.base_url}/{url.lstrip('/')}"
        body_bytes = _encode_body(body)
        headers = self.build_headers(method, url, body_bytes)
        t0 = time.perf_counter()
        try:
            with httpx.Client(
                timeout=self.timeout_sec,
                verify=self.verify_tls,
                transport=self._transport,
            ) as c:
                r = c.request(method, url, content=body_bytes, headers=headers)
        except httpx.TransportError as e:
            logger.warning("artemis transport error url=%s error=%s", url, e)
            raise ArtemisTransportError(url, str(e) or e.__class__.__name__) from e
        latency_ms = int((time.perf_counter() - t0) * 1000)
        payload = _parse_response(r)
        log_obj = {
            "type": "artemis_call",
            "url": url,
            "http_status": r.status_code,
            "artemis_code": payload.get("code") if isinstance(payload, dict) else None,
            "time_ms": latency_ms,
        }
        logger.info("artemis_call %s", json.dumps(log_obj, ensure_ascii=False))
        return r.status_code, payload

    def subscribe_by_event_types(self, event_types: list[int], event_dest: str) -> tuple[int, Any]:
        body = {"eventTypes": list(event_types), "eventDest": event_dest}
        return self.call(self.event_service_url(EVENT_SUBSCRIBE), body)

    def subscription_view(self) -> tuple[int, Any]:
        return self.call(self.event_service_url(EVENT_SUBSCRIPTION_VIEW), {})

    def unsubscribe_by_event_types(self, event_types: list[int]) -> tuple[int, Any]:
        return self.call(self.event_service_url(EVENT_UNSUBSCRIBE), {"eventTypes": list(event_types)})
