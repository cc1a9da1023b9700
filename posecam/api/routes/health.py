"""Liveness endpoint for the pose camera service."""

from fastapi import APIRouter

from posecam.api.services.state import engine_status

router = APIRouter()


@router.get("/health")
def health() -> dict[str, object]:
    """Report that the API is up, plus the camera engine state.

    Never starts the engine; `camera` is "idle" until a stream or stats
    request has created it.
    """

    running, error = engine_status()
    if error:
        camera = "error"
    elif running:
        camera = "running"
    else:
        camera = "idle"
    return {"status": "ok", "camera": camera, "error": error}
