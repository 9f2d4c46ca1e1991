"""Single source for request trace_id. Use scope for ASGI, request.scope for Starlette."""
import uuid

SCOPE_KEY = "trace_id"
TRACE_HEADER = "X-Trace-Id"


def ensure_trace_id(scope: dict) -> str:
    """Get or set trace_id on ASGI scope. Upstream X-Trace-Id wins when present."""
    tid = scope.get(SCOPE_KEY)
    if tid and isinstance(tid, str):
        return tid
    for raw_k, raw_v in scope.get("headers") or []:
        if raw_k.lower() == TRACE_HEADER.lower().encode("latin-1"):
            tid = raw_v.decode("latin-1").strip()[:64]
            break
    if not tid:
        tid = uuid.uuid4().hex[:16]
    scope[SCOPE_KEY] = tid
    return tid
