"""Error envelope in the Artemis response shape: {"code": "...", "msg": "..."}."""
from __future__ import annotations

NOT_FOUND_MSG = "path not found"


def error_envelope(*, code: str, msg: str) -> dict:
    return {
        "code": code,
        "msg": msg,
    }
