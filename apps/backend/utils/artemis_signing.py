"""Artemis OpenAPI request signing.

Signing string layout (byte-exact, the gateway recomputes it):

    METHOD
    [Accept]
    [Content-MD5]
    [Content-Type]
    [Date]
    <signed headers, "key:value" per line, sorted>
    <path>[?query]

Optional lines are omitted entirely when the header is absent. The signed
header block may be empty, the newline before the URL is kept anyway.
Signature: base64(HMAC-SHA256(app_secret, signing_string)).
"""
from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Mapping

from apps.backend.config import ArtemisConfigError

HEADER_SIGNATURE = "X-Ca-Signature"
HEADER_SIGNATURE_HEADERS = "X-Ca-Signature-Headers"

EXCLUDED_SIGNING_HEADERS = frozenset(
    {
        "x-ca-signature",
        "x-ca-signature-headers",
        "accept",
        "content-md5",
        "content-type",
        "date",
        "content-length",
        "server",
        "connection",
        "host",
        "transfer-encoding",
        "x-application-context",
        "content-encoding",
    }
)

# Optional signing-string lines after the method, in this exact order.
_LEADING_HEADERS = ("accept", "content-md5", "content-type", "date")


@dataclass(frozen=True)
class SigningContext:
    method: str
    path: str
    headers: Mapping[str, object] = field(default_factory=dict)
    content_md5: str = ""
    query: str = ""


@dataclass(frozen=True)
class RequestSignature:
    """Result of signing one outbound request.

    Attributes:
        signing_string: Canonical text the HMAC was computed over.
        signature: Base64 HMAC-SHA256 of signing_string.
        signed_headers: Lower-cased header names that took part, sorted.
    """

    signing_string: str
    signature: str
    signed_headers: tuple[str, ...]

    def as_headers(self) -> dict[str, str]:
        return {
            HEADER_SIGNATURE: self.signature,
            HEADER_SIGNATURE_HEADERS: ",".join(self.signed_headers),
        }


def compute_content_md5(body: bytes) -> str:
    """Base64 of the MD5 digest of the exact body bytes."""
    return base64.b64encode(hashlib.md5(body).digest()).decode("ascii")


def _header_lookup(headers: Mapping[str, object], name: str) -> str | None:
    for k, v in headers.items():
        if k.lower() == name:
            return None if v is None else str(v)
    return None


def _signing_headers(headers: Mapping[str, object]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in headers.items():
        key = k.lower()
        if key in EXCLUDED_SIGNING_HEADERS:
            continue
        out[key] = "" if v is None else str(v).strip()
    return out


def signed_header_names(headers: Mapping[str, object]) -> list[str]:
    return sorted(_signing_headers(headers))


def build_signing_string(ctx: SigningContext) -> str:
    lines = [ctx.method.upper()]
    for name in _LEADING_HEADERS:
        if name == "content-md5":
            value = ctx.content_md5 or _header_lookup(ctx.headers, name)
        else:
            value = _header_lookup(ctx.headers, name)
        if value:
            lines.append(value)

    signing = _signing_headers(ctx.headers)
    header_block = "\n".join(f"{k}:{signing[k]}" for k in sorted(signing))

    url = f"{ctx.path}?{ctx.query}" if ctx.query else ctx.path
    return "\n".join(lines) + "\n" + header_block + "\n" + url


def sign(signing_string: str, secret: str) -> str:
    try:
        key = secret.encode("utf-8")
        msg = signing_string.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ArtemisConfigError(f"signing input is not UTF-8 encodable: {e.reason}") from e
    digest = hmac.new(key, msg, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def sign_request(ctx: SigningContext, secret: str) -> RequestSignature:
    signing_string = build_signing_string(ctx)
    return RequestSignature(
        signing_string=signing_string,
        signature=sign(signing_string, secret),
        signed_headers=tuple(signed_header_names(ctx.headers)),
    )
