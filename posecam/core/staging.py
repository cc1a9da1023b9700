"""Raster staging for the two inference stages.

`ImageStager` owns the two fixed-size RGBA rasters that are allocated once per
preview size: the frame raster (camera pixels) and the crop raster (detector
input). `pad_to_square_and_resize` builds the pose-model input for one person.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from posecam.core.config.constants import DETECTOR_INPUT_SIZE, POSE_INPUT_SIZE
from posecam.core.errors import DegenerateDetection, ShapeMismatch
from posecam.core.geometry import build_transform, clamped_origin, invert_transform, to_affine
from posecam.core.types import Frame, Point, Raster, Rect

logger = logging.getLogger(__name__)

_TO_RGBA = {
    "bgr": cv2.COLOR_BGR2RGBA,
    "bgra": cv2.COLOR_BGRA2RGBA,
    "rgb": cv2.COLOR_RGB2RGBA,
}


@dataclass
class PaddedCrop:
    """Pose-model input plus the record that inverts the padding."""

    raster: Raster
    offset: Point
    scale_size: float


class ImageStager:
    """Frame and crop rasters plus the frame<->crop transforms."""

    def __init__(
        self,
        preview_width: int,
        preview_height: int,
        crop_size: int = DETECTOR_INPUT_SIZE,
        rotation: int = 0,
        maintain_aspect: bool = False,
        color_order: str = "bgr",
    ) -> None:
        if color_order not in _TO_RGBA and color_order != "rgba":
            raise ValueError("color_order must be bgr|bgra|rgb|rgba")
        self.preview_width = int(preview_width)
        self.preview_height = int(preview_height)
        self.crop_size = int(crop_size)
        self.color_order = color_order

        self.frame_raster = np.zeros((self.preview_height, self.preview_width, 4), dtype=np.uint8)
        self.crop_raster = np.zeros((self.crop_size, self.crop_size, 4), dtype=np.uint8)

        self.frame_to_crop = build_transform(
            self.preview_width,
            self.preview_height,
            self.crop_size,
            self.crop_size,
            rotation,
            maintain_aspect,
        )
        self.crop_to_frame = invert_transform(self.frame_to_crop)
        self._warp = to_affine(self.frame_to_crop)

    @property
    def frame_size(self) -> tuple[int, int]:
        return (self.preview_width, self.preview_height)

    @property
    def crop_dims(self) -> tuple[int, int]:
        return (self.crop_size, self.crop_size)

    def load_frame(self, frame: Frame) -> Raster:
        """Copy a camera frame into the frame raster (converted to RGBA)."""

        h, w = frame.shape[:2]
        if (w, h) != (self.preview_width, self.preview_height):
            raise ShapeMismatch(
                f"frame is {w}x{h}, preview negotiated at "
                f"{self.preview_width}x{self.preview_height}"
            )
        if self.color_order == "rgba":
            np.copyto(self.frame_raster, frame)
        else:
            self.frame_raster[...] = cv2.cvtColor(frame, _TO_RGBA[self.color_order])
        return self.frame_raster

    def warp_to_crop(self) -> Raster:
        """Warp the frame raster into the detector-input raster."""

        self.crop_raster[...] = cv2.warpAffine(
            self.frame_raster,
            self._warp,
            (self.crop_size, self.crop_size),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0, 0),
        )
        return self.crop_raster


def pad_to_square_and_resize(src: Raster, box: Rect, size: int = POSE_INPUT_SIZE) -> PaddedCrop:
    """Cut `box` out of `src`, pad it to a white square and resize to `size`.

    The sub-image is anchored at the top-left of the square, so padding only
    ever grows the right or bottom edge. `offset` is the clamped top-left in
    `src` pixels and `scale_size` the larger side of `box`; a point `(x, y)` in
    the resized output maps back to `(x * scale_size / size + offset[0], ...)`.
    """

    src_h, src_w = src.shape[:2]
    box_w = box.width
    box_h = box.height

    left, top = clamped_origin(box)
    w = int(box_w if left + box_w <= src_w else src_w - left)
    h = int(box_h if top + box_h <= src_h else src_h - top)
    if w <= 0 or h <= 0:
        raise DegenerateDetection(f"box {box} leaves no pixels inside a {src_w}x{src_h} raster")

    sub = src[top : top + h, left : left + w]
    side = max(w, h)
    # White (and opaque, for RGBA) everywhere the sub-image does not cover.
    square = np.full((side, side) + src.shape[2:], 255, dtype=src.dtype)
    square[:h, :w] = sub

    resized = cv2.resize(square, (size, size), interpolation=cv2.INTER_LINEAR)
    return PaddedCrop(
        raster=resized,
        offset=(float(left), float(top)),
        scale_size=float(max(box_w, box_h)),
    )


def save_raster(raster: Raster, name: str, directory: str | Path) -> Path:
    """Write an RGBA raster to `directory/name` as PNG (debugging aid)."""

    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / name
    if raster.ndim == 3 and raster.shape[2] == 4:
        img = cv2.cvtColor(raster, cv2.COLOR_RGBA2BGRA)
    elif raster.ndim == 3 and raster.shape[2] == 3:
        img = cv2.cvtColor(raster, cv2.COLOR_RGB2BGR)
    else:
        img = raster
    if not cv2.imwrite(str(path), img):
        logger.warning("Failed to save raster to %s", path)
    return path
