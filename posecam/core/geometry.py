"""Affine transforms between rectangular pixel spaces.

Transforms are 3x3 numpy matrices acting on column vectors `(x, y, 1)`.
`build_transform` composes them the same way the camera preview code does:
center the source on the origin, rotate by a quadrant, scale, and move to the
destination center.
"""

from __future__ import annotations

import math

import numpy as np

from posecam.core.errors import InvalidGeometry
from posecam.core.types import Point, Rect

# Exact (cos, sin) per quadrant; avoids float noise from np.cos/np.sin.
_QUADRANTS: dict[int, tuple[float, float]] = {
    0: (1.0, 0.0),
    90: (0.0, 1.0),
    180: (-1.0, 0.0),
    270: (0.0, -1.0),
}


def _translate(dx: float, dy: float) -> np.ndarray:
    return np.array([[1.0, 0.0, dx], [0.0, 1.0, dy], [0.0, 0.0, 1.0]])


def _scale(sx: float, sy: float) -> np.ndarray:
    return np.array([[sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, 1.0]])


def _rotate(cos_a: float, sin_a: float) -> np.ndarray:
    # Clockwise on screen because y grows downwards.
    return np.array([[cos_a, -sin_a, 0.0], [sin_a, cos_a, 0.0], [0.0, 0.0, 1.0]])


def normalize_rotation(rotation: int) -> int:
    """Return `rotation` folded into {0, 90, 180, 270}."""

    rot = int(rotation) % 360
    if rot not in _QUADRANTS:
        raise InvalidGeometry(f"rotation must be a multiple of 90, got {rotation}")
    return rot


def is_transposed(rotation: int) -> bool:
    """True when `rotation` swaps the width and height axes."""

    return normalize_rotation(rotation) % 180 == 90


def build_transform(
    src_w: float,
    src_h: float,
    dst_w: float,
    dst_h: float,
    rotation: int = 0,
    maintain_aspect: bool = False,
) -> np.ndarray:
    """Build the transform that maps a src_w x src_h space onto dst_w x dst_h.

    Args:
        src_w, src_h: Source space size in pixels.
        dst_w, dst_h: Destination space size in pixels.
        rotation: Clockwise rotation in degrees, one of 0/90/180/270 (mod 360).
        maintain_aspect: Use one uniform scale (the smaller of the two axes),
            which letterboxes the source inside the destination.

    Returns:
        A 3x3 float matrix.
    """

    if src_w <= 0 or src_h <= 0 or dst_w <= 0 or dst_h <= 0:
        raise InvalidGeometry(
            f"transform sizes must be > 0: src={src_w}x{src_h} dst={dst_w}x{dst_h}"
        )
    rot = normalize_rotation(rotation)
    cos_a, sin_a = _QUADRANTS[rot]

    in_w, in_h = (src_h, src_w) if rot % 180 == 90 else (src_w, src_h)
    sx = float(dst_w) / float(in_w)
    sy = float(dst_h) / float(in_h)
    if maintain_aspect:
        sx = sy = min(sx, sy)

    m = _translate(-src_w / 2.0, -src_h / 2.0)
    m = _rotate(cos_a, sin_a) @ m
    m = _scale(sx, sy) @ m
    m = _translate(dst_w / 2.0, dst_h / 2.0) @ m
    return m


def invert_transform(m: np.ndarray) -> np.ndarray:
    """Return the inverse of `m` (raises InvalidGeometry when singular)."""

    try:
        inv = np.linalg.inv(m)
    except np.linalg.LinAlgError as exc:
        raise InvalidGeometry("transform is not invertible") from exc
    if not np.all(np.isfinite(inv)):
        raise InvalidGeometry("transform is not invertible")
    return inv


def map_point(m: np.ndarray, point: Point) -> Point:
    x, y = point
    out = m @ np.array([float(x), float(y), 1.0])
    return (float(out[0] / out[2]), float(out[1] / out[2]))


def map_rect(m: np.ndarray, rect: Rect) -> Rect:
    """Map `rect` through `m` and return the bounding box of its corners."""

    corners = np.array(
        [
            [rect.left, rect.top, 1.0],
            [rect.right, rect.top, 1.0],
            [rect.right, rect.bottom, 1.0],
            [rect.left, rect.bottom, 1.0],
        ]
    )
    mapped = corners @ m.T
    xs = mapped[:, 0] / mapped[:, 2]
    ys = mapped[:, 1] / mapped[:, 2]
    return Rect(float(xs.min()), float(ys.min()), float(xs.max()), float(ys.max()))


def to_affine(m: np.ndarray) -> np.ndarray:
    """Return the 2x3 float32 form expected by `cv2.warpAffine`."""

    return np.ascontiguousarray(m[:2, :], dtype=np.float32)


def clamped_origin(rect: Rect) -> tuple[int, int]:
    """Integer top-left of `rect` clamped to the raster origin (ceil, then >= 0)."""

    left = math.ceil(rect.left) if rect.left >= 0 else 0
    top = math.ceil(rect.top) if rect.top >= 0 else 0
    return (left, top)
