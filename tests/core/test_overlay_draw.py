import numpy as np

from posecam.core.overlay.draw import (
    BorderedText,
    dip_to_px,
    draw_frame_info,
    draw_round_rect,
    font_scale_for,
    frame_info_lines,
)
from posecam.core.types import FrameInfo, Rect


def test_dip_conversion_and_font_scale():
    assert dip_to_px(18, 2.0) == 36.0
    assert font_scale_for(22.0) == 1.0
    assert font_scale_for(0.0) == 0.1


def test_frame_info_lines():
    info = FrameInfo(
        timestamp=3,
        frame_size=(640, 480),
        crop_size=(300, 300),
        detect_ms=8.0,
        pose_ms=41.6,
        persons=2,
    )
    assert frame_info_lines(info) == ["Frame: 640x480", "Crop: 300x300", "Inference: 42ms"]
    assert frame_info_lines(None) == []


def test_draw_frame_info_paints_bottom_left_only():
    img = np.zeros((200, 300, 3), dtype=np.uint8)
    info = FrameInfo(1, (640, 480), (300, 300), 1.0, 2.0, 0)
    draw_frame_info(img, info, BorderedText(dip_to_px(10)))
    assert img[150:, :150].any()
    assert not img[:50, 200:].any()


def test_draw_frame_info_without_info_is_noop():
    img = np.zeros((50, 50, 3), dtype=np.uint8)
    draw_frame_info(img, None, BorderedText(10))
    assert not img.any()


def test_round_rect_leaves_corners_open():
    img = np.zeros((100, 100, 3), dtype=np.uint8)
    draw_round_rect(img, Rect(10, 10, 90, 90), 20, (0, 255, 0), 2)
    assert img[10, 50, 1] > 0
    assert not img[10, 10].any()


def test_round_rect_zero_radius_is_plain_rectangle():
    img = np.zeros((50, 50, 3), dtype=np.uint8)
    draw_round_rect(img, Rect(5, 5, 40, 40), 0, (255, 255, 255), 1)
    assert img[5, 5].any()


def test_bordered_text_with_background_fills_box():
    img = np.zeros((60, 200, 3), dtype=np.uint8)
    BorderedText(18).draw_text(img, 10, 40, "person 90.00%", background=(255, 0, 0))
    assert (img == np.array([255, 0, 0], dtype=np.uint8)).all(axis=2).any()
