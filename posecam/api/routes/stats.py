"""Stats endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from posecam.api.schemas.models import StatsSchema
from posecam.api.services.engine import CameraEngine
from posecam.api.services.state import get_engine

router = APIRouter()


@router.get("/stats", response_model=StatsSchema)
def stats(engine: CameraEngine = Depends(get_engine)) -> StatsSchema:
    """Return the status line values shown under the preview."""

    info = engine.latest_frame_info()
    if info is None:
        return StatsSchema(
            stream_fps=engine.stream_fps(),
            dropped_frames=engine.dropped_frames(),
            error=engine.last_error,
        )
    return StatsSchema(
        frame_size=info.frame_size,
        crop_size=info.crop_size,
        inference_ms=info.pose_ms,
        detect_ms=info.detect_ms,
        total_persons=len(engine.tracked()),
        stream_fps=engine.stream_fps(),
        dropped_frames=engine.dropped_frames(),
        error=engine.last_error,
    )
