import numpy as np
import pytest

from posecam.core.errors import InvalidGeometry
from posecam.core.geometry import (
    build_transform,
    clamped_origin,
    invert_transform,
    is_transposed,
    map_point,
    map_rect,
    normalize_rotation,
    to_affine,
)
from posecam.core.types import Rect


@pytest.mark.parametrize("rotation", [0, 90, 180, 270])
@pytest.mark.parametrize("maintain_aspect", [False, True])
def test_transform_and_inverse_round_trip(rotation, maintain_aspect):
    m = build_transform(640, 480, 300, 300, rotation, maintain_aspect)
    inv = invert_transform(m)
    for point in [(0.0, 0.0), (639.0, 479.0), (320.0, 240.0), (12.5, 400.25)]:
        back = map_point(inv, map_point(m, point))
        assert back == pytest.approx(point, abs=1e-6)


def test_frame_corners_fill_crop_without_rotation():
    m = build_transform(640, 480, 300, 300)
    assert map_point(m, (0, 0)) == pytest.approx((0.0, 0.0))
    assert map_point(m, (640, 480)) == pytest.approx((300.0, 300.0))
    assert map_point(m, (320, 240)) == pytest.approx((150.0, 150.0))


def test_quarter_turn_swaps_axes():
    # A 640x480 frame rotated 90 degrees is 480 wide and 640 tall.
    m = build_transform(640, 480, 480, 640, rotation=90)
    assert map_point(m, (0, 0)) == pytest.approx((480.0, 0.0))
    assert map_point(m, (640, 480)) == pytest.approx((0.0, 640.0))


def test_maintain_aspect_letterboxes_with_smaller_scale():
    m = build_transform(640, 480, 300, 300, maintain_aspect=True)
    scale = 300 / 640
    assert m[0, 0] == pytest.approx(scale)
    assert m[1, 1] == pytest.approx(scale)
    # Centered vertically: 480 * scale = 225 tall, 37.5 px margins.
    assert map_point(m, (0, 0)) == pytest.approx((0.0, 37.5))


def test_rotation_is_normalized_and_validated():
    assert normalize_rotation(-90) == 270
    assert normalize_rotation(450) == 90
    assert is_transposed(270)
    assert not is_transposed(180)
    with pytest.raises(InvalidGeometry):
        normalize_rotation(45)


def test_non_positive_sizes_are_rejected():
    with pytest.raises(InvalidGeometry):
        build_transform(0, 480, 300, 300)
    with pytest.raises(ValueError):
        build_transform(640, 480, 300, -1)


def test_singular_matrix_cannot_be_inverted():
    with pytest.raises(InvalidGeometry):
        invert_transform(np.zeros((3, 3)))


def test_map_rect_returns_bounding_box_of_rotated_corners():
    m = build_transform(640, 480, 480, 640, rotation=90)
    r = map_rect(m, Rect(0, 0, 100, 50))
    assert r.as_tuple() == pytest.approx((430.0, 0.0, 480.0, 100.0))


def test_to_affine_is_2x3_float32():
    a = to_affine(build_transform(640, 480, 300, 300))
    assert a.shape == (2, 3)
    assert a.dtype == np.float32


def test_clamped_origin_rounds_up_and_clamps_negatives():
    assert clamped_origin(Rect(10.2, 3.0, 50, 50)) == (11, 3)
    assert clamped_origin(Rect(-4.0, -0.5, 50, 50)) == (0, 0)
