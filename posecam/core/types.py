"""Shared type definitions used across the pose camera.

This module centralizes the small, stable types (rectangles, recognitions,
keypoints, persons and per-frame render records) so the detector, pose,
pipeline and overlay code can stay strongly typed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

import numpy as np

Frame = np.ndarray
Raster = np.ndarray

Point = tuple[float, float]
Color = tuple[int, int, int]  # BGR, as OpenCV draws


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in float pixels of some named coordinate space."""

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center_x(self) -> float:
        return (self.left + self.right) * 0.5

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) * 0.5

    def is_degenerate(self, min_size: float) -> bool:
        """Return True when either side is below `min_size`."""

        return self.width < min_size or self.height < min_size

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.left, self.top, self.right, self.bottom)


@dataclass
class Recognition:
    """Detector output: label, confidence and box in detector-input space."""

    id: str
    title: str
    confidence: float
    location: Rect | None = None


class BodyPart(IntEnum):
    """The 17 body landmarks produced by the pose model, in output order."""

    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


NUM_KEYPOINTS = len(BodyPart)


@dataclass
class Keypoint:
    """One body landmark in pose-model space (0..257)."""

    part: BodyPart
    position: Point
    score: float


@dataclass
class Person:
    """Single-person pose result plus the record needed to undo the padding.

    `offset` is the clamped top-left of the person crop and `scale_size` the
    side of the padded square, both in detector-input units.
    """

    keypoints: list[Keypoint]
    score: float
    offset: Point
    scale_size: float
    source_box: Rect | None = None


@dataclass
class TrackedRecognition:
    """Per-frame render record: a recognition, its pose and a display color."""

    location: Rect  # frame space
    detection_confidence: float
    title: str
    color: Color
    keypoints: list[Keypoint] = field(default_factory=list)
    offset: Point = (0.0, 0.0)
    scale_size: float = 0.0


@dataclass
class FrameInfo:
    """Timing/status payload posted to the UI after each publish."""

    timestamp: int
    frame_size: tuple[int, int]
    crop_size: tuple[int, int]
    detect_ms: float
    pose_ms: float
    persons: int
