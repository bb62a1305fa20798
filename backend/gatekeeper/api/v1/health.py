"""Health check endpoints."""

from fastapi import APIRouter

from gatekeeper.api.deps import Registry

router = APIRouter()


@router.get("")
def health_check(registry: Registry) -> dict:
    """Health check with the active queue backend and job counts."""
    return {
        "status": "ok",
        "queue": {
            "backend": registry.backend,
            "queues": {name: stats.to_dict() for name, stats in registry.stats().items()},
        },
    }
