"""Overlay drawing helpers (OpenCV).

Canvas-level primitives shared by the render cache and the engine's status
overlay: rounded boxes, bordered text and the frame/crop/inference info lines.
"""

from __future__ import annotations

import cv2
import numpy as np

from posecam.core.types import Color, FrameInfo, Rect

TEXT_COLOR = (255, 255, 255)
BORDER_COLOR = (0, 0, 0)
FONT = cv2.FONT_HERSHEY_SIMPLEX
# Pixel height of FONT at fontScale=1.0.
_FONT_BASE_PX = 22.0


def dip_to_px(dip: float, density: float = 1.0) -> float:
    """Convert density-independent pixels to device pixels."""

    return float(dip) * float(density)


def font_scale_for(text_size_px: float) -> float:
    """OpenCV fontScale that renders roughly `text_size_px` tall glyphs."""

    return max(0.1, float(text_size_px) / _FONT_BASE_PX)


def draw_round_rect(
    img: np.ndarray,
    rect: Rect,
    radius: float,
    color: Color,
    thickness: int = 2,
) -> None:
    """Stroke a rectangle with rounded corners of `radius` pixels."""

    x1, y1, x2, y2 = (int(round(v)) for v in rect.as_tuple())
    r = int(max(0.0, min(radius, (x2 - x1) / 2.0, (y2 - y1) / 2.0)))
    if r == 0:
        cv2.rectangle(img, (x1, y1), (x2, y2), color, thickness, cv2.LINE_AA)
        return

    cv2.line(img, (x1 + r, y1), (x2 - r, y1), color, thickness, cv2.LINE_AA)
    cv2.line(img, (x1 + r, y2), (x2 - r, y2), color, thickness, cv2.LINE_AA)
    cv2.line(img, (x1, y1 + r), (x1, y2 - r), color, thickness, cv2.LINE_AA)
    cv2.line(img, (x2, y1 + r), (x2, y2 - r), color, thickness, cv2.LINE_AA)
    cv2.ellipse(img, (x1 + r, y1 + r), (r, r), 180, 0, 90, color, thickness, cv2.LINE_AA)
    cv2.ellipse(img, (x2 - r, y1 + r), (r, r), 270, 0, 90, color, thickness, cv2.LINE_AA)
    cv2.ellipse(img, (x2 - r, y2 - r), (r, r), 0, 0, 90, color, thickness, cv2.LINE_AA)
    cv2.ellipse(img, (x1 + r, y2 - r), (r, r), 90, 0, 90, color, thickness, cv2.LINE_AA)


class BorderedText:
    """Outlined text, optionally on a filled background box."""

    def __init__(self, text_size_px: float, color: Color = TEXT_COLOR) -> None:
        self.text_size_px = float(text_size_px)
        self.scale = font_scale_for(text_size_px)
        self.color = color
        self.thickness = max(1, int(round(self.scale)))

    def draw_text(
        self,
        img: np.ndarray,
        x: float,
        y: float,
        text: str,
        background: Color | None = None,
    ) -> None:
        """Draw `text` with its bottom-left at (x, y)."""

        org = (int(x), int(y))
        if background is not None:
            (tw, th), baseline = cv2.getTextSize(text, FONT, self.scale, self.thickness)
            cv2.rectangle(
                img,
                (org[0], org[1] - th - baseline),
                (org[0] + tw, org[1] + baseline),
                background,
                -1,
            )
        cv2.putText(
            img, text, org, FONT, self.scale, BORDER_COLOR, self.thickness + 2, cv2.LINE_AA
        )
        cv2.putText(img, text, org, FONT, self.scale, self.color, self.thickness, cv2.LINE_AA)

    def draw_lines(self, img: np.ndarray, x: float, y: float, lines: list[str]) -> None:
        """Draw `lines` stacked upwards so the last one ends at (x, y)."""

        step = self.text_size_px * 1.4
        for i, line in enumerate(reversed(lines)):
            self.draw_text(img, x, y - i * step, line)


def frame_info_lines(info: FrameInfo | None) -> list[str]:
    """Status lines shown under the preview: frame size, crop size, inference time."""

    if info is None:
        return []
    fw, fh = info.frame_size
    cw, ch = info.crop_size
    return [
        f"Frame: {fw}x{fh}",
        f"Crop: {cw}x{ch}",
        f"Inference: {int(round(info.pose_ms))}ms",
    ]


def draw_frame_info(img: np.ndarray, info: FrameInfo | None, text: BorderedText) -> np.ndarray:
    """Draw the status lines in the bottom-left corner of `img` (in place)."""

    lines = frame_info_lines(info)
    if lines:
        text.draw_lines(img, 8, img.shape[0] - 8, lines)
    return img
