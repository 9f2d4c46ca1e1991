"""Health endpoint."""
from fastapi import APIRouter, Depends

from apps.backend.deps import get_request_store
from apps.backend.services.request_store import RequestStore

router = APIRouter()


@router.get("/health")
def health(store: RequestStore = Depends(get_request_store)):
    return {
        "status": "ok",
        "service": "artemis-events",
        "stored_requests": len(store),
        "store_capacity": store.capacity,
    }
