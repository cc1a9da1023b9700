"""Runtime configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `POSECAM_`. Field defaults mirror the baked-in constants, so a
missing config file yields the stock camera app behaviour.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from posecam.core.config import constants as c
from posecam.core.geometry import normalize_rotation


class PoseCamSettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `POSECAM_` env overrides."""

    model_config = SettingsConfigDict(env_prefix="POSECAM_", validate_assignment=True)

    # Camera
    video_source: str = Field("webcam", description="webcam|file")
    camera_index: int = 0
    video_path: str | None = None
    preview_width: int = c.DESIRED_PREVIEW_SIZE[0]
    preview_height: int = c.DESIRED_PREVIEW_SIZE[1]
    # Camera orientation relative to the display canvas, degrees clockwise.
    sensor_orientation: int = 0
    maintain_aspect: bool = c.MAINTAIN_ASPECT

    # Detector
    detector_model: str = c.DETECTOR_MODEL_PATH
    labels_path: str | None = c.DETECTOR_LABELS_PATH
    detector_input_size: int = c.DETECTOR_INPUT_SIZE
    detector_quantized: bool = c.DETECTOR_IS_QUANTIZED
    use_accelerator: bool = False
    num_threads: int | None = None

    # Pose
    pose_model: str = c.POSE_MODEL_PATH
    pose_device: str = Field("cpu", description="cpu|gpu|nnapi")
    pose_input_size: int = c.POSE_INPUT_SIZE

    # Filtering
    person_label: str = c.PERSON_LABEL
    min_confidence: float = c.MINIMUM_CONFIDENCE
    keypoint_min_score: float = c.KEYPOINT_MIN_SCORE
    min_box_size: float = c.MIN_BOX_SIZE

    # Overlay
    display_density: float = 1.0
    pipeline_text_size_dip: float = c.PIPELINE_TEXT_SIZE_DIP
    tracker_text_size_dip: float = c.TRACKER_TEXT_SIZE_DIP
    corner_divisor: float = c.CORNER_DIVISOR
    draw_body_joints: bool = False
    keypoint_mapping: str = Field("legacy", description="legacy|frame")
    cycle_palette: bool = False
    debug_overlay: bool = False
    canvas_width: int | None = None
    canvas_height: int | None = None

    # Debug dumps of the staged rasters
    save_preview: bool = c.SAVE_PREVIEW_BITMAP
    save_dir: str = "preview_dumps"

    # Streaming
    jpeg_quality: int = 70
    target_fps: float | None = None

    @field_validator("video_source")
    @classmethod
    def _validate_source(cls, v: str) -> str:
        if v not in {"webcam", "file"}:
            raise ValueError("video_source must be webcam|file")
        return v

    @field_validator("pose_device")
    @classmethod
    def _validate_pose_device(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 not in {"cpu", "gpu", "nnapi"}:
            raise ValueError("pose_device must be cpu|gpu|nnapi")
        return v2

    @field_validator("keypoint_mapping")
    @classmethod
    def _validate_keypoint_mapping(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 not in {"legacy", "frame"}:
            raise ValueError("keypoint_mapping must be legacy|frame")
        return v2

    @field_validator("sensor_orientation")
    @classmethod
    def _validate_orientation(cls, v: int) -> int:
        return normalize_rotation(v)

    @field_validator("min_confidence", "keypoint_min_score")
    @classmethod
    def _validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= float(v) <= 1.0:
            raise ValueError("thresholds must be in [0, 1]")
        return float(v)

    @field_validator(
        "preview_width", "preview_height", "detector_input_size", "pose_input_size"
    )
    @classmethod
    def _validate_positive_size(cls, v: int) -> int:
        if int(v) <= 0:
            raise ValueError("sizes must be > 0")
        return int(v)

    @field_validator("canvas_width", "canvas_height", "num_threads")
    @classmethod
    def _validate_optional_positive(cls, v: int | None) -> int | None:
        if v is None:
            return v
        if int(v) <= 0:
            raise ValueError("must be > 0")
        return int(v)

    @field_validator("min_box_size", "corner_divisor", "display_density")
    @classmethod
    def _validate_positive_float(cls, v: float) -> float:
        if float(v) <= 0.0:
            raise ValueError("must be > 0")
        return float(v)

    @field_validator("jpeg_quality")
    @classmethod
    def _validate_jpeg_quality(cls, v: int) -> int:
        if not 10 <= int(v) <= 100:
            raise ValueError("jpeg_quality must be in [10, 100]")
        return int(v)

    @field_validator("target_fps")
    @classmethod
    def _validate_target_fps(cls, v: float | None) -> float | None:
        if v is None:
            return v
        if v < 0:
            raise ValueError("target_fps must be >= 0")
        return float(v)


def settings_to_dict(settings: PoseCamSettings) -> dict[str, Any]:
    """Convert settings to a plain dict."""

    return settings.model_dump()


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/posecam.config.yml)."""

    return Path(os.getenv("POSECAM_CONFIG", "config/posecam.config.yml"))


def load_settings() -> PoseCamSettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = PoseCamSettings()
    env_overrides: dict[str, Any] = {
        name: getattr(env_settings, name) for name in env_settings.model_fields_set
    }

    merged = {**data, **env_overrides}
    return PoseCamSettings(**merged)
