"""Pydantic models for the HTTP/WS API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from posecam.core.types import FrameInfo, TrackedRecognition


class KeypointSchema(BaseModel):
    """One body keypoint in pose-model space."""

    part: str
    position: tuple[float, float]
    score: float


class TrackedRecognitionSchema(BaseModel):
    """Tracked person payload (frame-space box, BGR color, pose)."""

    title: str
    confidence: float
    bbox: tuple[float, float, float, float]
    color: tuple[int, int, int]
    keypoints: list[KeypointSchema]
    offset: tuple[float, float]
    scale_size: float

    @classmethod
    def from_tracked(cls, rec: TrackedRecognition) -> TrackedRecognitionSchema:
        return cls(
            title=rec.title,
            confidence=rec.detection_confidence,
            bbox=rec.location.as_tuple(),
            color=rec.color,
            keypoints=[
                KeypointSchema(part=kp.part.name.lower(), position=kp.position, score=kp.score)
                for kp in rec.keypoints
            ],
            offset=rec.offset,
            scale_size=rec.scale_size,
        )


class FrameSchema(BaseModel):
    """Per-render metadata payload."""

    frame_id: int
    timestamp: int | None = None
    frame_size: tuple[int, int] | None = None
    crop_size: tuple[int, int] | None = None
    detect_ms: float | None = None
    pose_ms: float | None = None
    persons: list[TrackedRecognitionSchema]
    stream_fps: float | None = None

    @classmethod
    def build(
        cls,
        frame_id: int,
        info: FrameInfo | None,
        tracked: list[TrackedRecognition],
        stream_fps: float | None = None,
    ) -> FrameSchema:
        return cls(
            frame_id=frame_id,
            timestamp=info.timestamp if info else None,
            frame_size=info.frame_size if info else None,
            crop_size=info.crop_size if info else None,
            detect_ms=info.detect_ms if info else None,
            pose_ms=info.pose_ms if info else None,
            persons=[TrackedRecognitionSchema.from_tracked(t) for t in tracked],
            stream_fps=stream_fps,
        )


class StatsSchema(BaseModel):
    """High-level summary stats payload."""

    frame_size: tuple[int, int] | None = None
    crop_size: tuple[int, int] | None = None
    inference_ms: float = 0.0
    detect_ms: float = 0.0
    total_persons: int = 0
    stream_fps: float | None = None
    dropped_frames: int = 0
    error: str | None = None


class ConfigSchema(BaseModel):
    """Runtime configuration payload (the editable subset of the settings)."""

    video_source: str
    video_path: str | None = None
    camera_index: int = Field(default=0, ge=0)
    sensor_orientation: int = 0
    maintain_aspect: bool = False
    detector_model: str
    labels_path: str | None = None
    pose_model: str
    pose_device: str = "cpu"
    use_accelerator: bool = False
    num_threads: int | None = Field(default=None, gt=0)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    keypoint_min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    draw_body_joints: bool = False
    keypoint_mapping: str = "legacy"
    cycle_palette: bool = False
    debug_overlay: bool = False
    target_fps: float | None = Field(default=None, ge=0)
    jpeg_quality: int = Field(default=70, ge=10, le=100)

    @field_validator("video_source")
    @classmethod
    def _validate_source(cls, v: str) -> str:
        if v not in {"webcam", "file"}:
            raise ValueError("video_source must be webcam|file")
        return v

    @field_validator("pose_device")
    @classmethod
    def _validate_pose_device(cls, v: str) -> str:
        v2 = v.strip().lower()
        if v2 not in {"cpu", "gpu", "nnapi"}:
            raise ValueError("pose_device must be cpu|gpu|nnapi")
        return v2

    @field_validator("keypoint_mapping")
    @classmethod
    def _validate_keypoint_mapping(cls, v: str) -> str:
        v2 = v.strip().lower()
        if v2 not in {"legacy", "frame"}:
            raise ValueError("keypoint_mapping must be legacy|frame")
        return v2

    @field_validator("sensor_orientation")
    @classmethod
    def _validate_orientation(cls, v: int) -> int:
        if int(v) % 90 != 0:
            raise ValueError("sensor_orientation must be a multiple of 90")
        return int(v) % 360
