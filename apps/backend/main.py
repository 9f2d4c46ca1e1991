"""Точка входа FastAPI."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.backend.config import Settings, get_settings
from apps.backend.middleware.event_inbox import ArtemisEventInboxMiddleware
from apps.backend.middleware.trace_id import ensure_trace_id
from apps.backend.routers import health, viewer
from apps.backend.services.request_store import RequestStore
from apps.backend.utils.api_errors import NOT_FOUND_MSG, error_envelope

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Artemis-style envelope for every HTTP error, 404 included."""
    trace_id = ensure_trace_id(request.scope)
    status_code = exc.status_code
    # only GET / and the callback path answer anything other than 404
    if status_code in (404, 405):
        status_code = 404
        msg = NOT_FOUND_MSG
    else:
        msg = exc.detail if isinstance(exc.detail, str) else "request error"
    logger.info(
        "http_error status=%s path=%s method=%s trace_id=%s",
        exc.status_code, request.url.path, request.method, trace_id,
    )
    payload = error_envelope(code=str(status_code), msg=msg)
    return JSONResponse(
        content=payload,
        status_code=status_code,
        headers={"Connection": "close", "X-Trace-Id": trace_id},
        media_type="application/json; charset=utf-8",
    )


def create_app(settings: Settings | None = None, store: RequestStore | None = None) -> FastAPI:
    s = settings or get_settings()
    app = FastAPI(
        title="Artemis Events",
        description="Artemis event subscription webhook receiver",
        version="0.1.0",
    )
    app.state.settings = s
    app.state.request_store = store if store is not None else RequestStore(s.request_store_capacity)

    app.add_middleware(
        ArtemisEventInboxMiddleware,
        store=app.state.request_store,
        paths=[s.webhook_path, *s.webhook_path_aliases],
        receive_timeout=s.webhook_receive_timeout_seconds,
    )

    app.include_router(health.router, tags=["System"])
    app.include_router(viewer.router, tags=["Viewer"])
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    return app


app = create_app()
