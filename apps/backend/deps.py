"""Зависимости FastAPI."""
from fastapi import Request

from apps.backend.services.request_store import RequestStore


def get_request_store(request: Request) -> RequestStore:
    return request.app.state.request_store
