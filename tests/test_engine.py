import time

import numpy as np
import pytest

import posecam.api.services.engine as engine_mod
from posecam.api.services.engine import CLASSIFIER_INIT_FAILED, CameraEngine
from posecam.core.config.settings import PoseCamSettings
from posecam.core.errors import ModelLoadFailed
from posecam.core.types import BodyPart, Keypoint, Person, Recognition, Rect


class FakeSource:
    def __init__(self, size=(640, 480)):
        self.size = size
        self.closed = False
        self.reads = 0

    @property
    def preview_size(self):
        return self.size

    def read(self):
        self.reads += 1
        time.sleep(0.005)
        w, h = self.size
        return np.full((h, w, 3), 40, dtype=np.uint8)

    def close(self):
        self.closed = True


class FakeDetector:
    def recognize(self, raster):
        return [Recognition(id="0", title="person", confidence=0.9, location=Rect(100, 100, 200, 260))]

    def set_use_accelerator(self, enabled):
        return None

    def set_num_threads(self, num_threads):
        return None


class FakePose:
    def estimate_single(self, raster, scale_size, source_box):
        return Person(
            keypoints=[Keypoint(p, (128.0, 128.0), 0.9) for p in BodyPart],
            score=0.9,
            offset=(source_box.left, source_box.top),
            scale_size=scale_size,
        )


def _wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def fake_models(monkeypatch):
    monkeypatch.setattr(engine_mod, "build_detector", lambda settings: FakeDetector())
    monkeypatch.setattr(engine_mod, "build_pose_estimator", lambda settings: FakePose())


def test_model_load_failure_reports_classifier_error(monkeypatch):
    def _fail(settings):
        raise ModelLoadFailed("detector model not found")

    opened = []
    monkeypatch.setattr(engine_mod, "build_detector", _fail)
    monkeypatch.setattr(CameraEngine, "_make_source", lambda self: opened.append(1))

    engine = CameraEngine(PoseCamSettings())
    engine.start()

    assert engine.last_error == CLASSIFIER_INIT_FAILED == "Classifier could not be initialized"
    assert engine.running is False
    assert opened == []
    engine.stop()


def test_engine_reports_source_error(fake_models):
    settings = PoseCamSettings(video_source="file", video_path="/nonexistent/video.mp4")
    engine = CameraEngine(settings)
    engine.start()
    assert engine.last_error == "Failed to initialize video source"
    assert engine.running is False
    engine.stop()


def test_engine_streams_rendered_overlay(fake_models, monkeypatch):
    source = FakeSource()
    monkeypatch.setattr(CameraEngine, "_make_source", lambda self: source)

    engine = CameraEngine(PoseCamSettings(target_fps=0))
    engine.start()
    try:
        assert engine.running
        assert _wait_for(lambda: engine.latest_frame_info() is not None)
        assert _wait_for(lambda: engine.latest_stream_packet()[2] is not None)
        frame, frame_id, info, tracked = engine.latest_stream_packet()
        assert frame is not None and frame[:2] == b"\xff\xd8"
        assert frame_id >= 1
        assert info.frame_size == (640, 480)
        assert info.crop_size == (300, 300)
        assert len(tracked) == 1
        assert len(engine.tracked()) == 1
        assert engine.latest_frame() is not None
    finally:
        engine.stop()
    assert source.closed


def test_render_canvas_follows_sensor_orientation(fake_models):
    engine = CameraEngine(PoseCamSettings(sensor_orientation=90))
    engine.render_cache.set_frame_configuration(640, 480, 90)
    canvas = engine.render_canvas(np.zeros((480, 640, 3), dtype=np.uint8))
    assert canvas.shape == (640, 480, 3)


def test_render_canvas_uses_configured_canvas_size(fake_models):
    engine = CameraEngine(PoseCamSettings(canvas_width=320, canvas_height=320))
    engine.render_cache.set_frame_configuration(640, 480, 0)
    frame = np.full((480, 640, 3), 200, dtype=np.uint8)
    canvas = engine.render_canvas(frame)
    assert canvas.shape == (320, 320, 3)
    # The frame is letterboxed to 320x240 at the canvas origin.
    assert canvas[10, 300].tolist() == [200, 200, 200]
    assert canvas[300, 300].tolist() == [0, 0, 0]


def test_stop_is_safe_before_start():
    engine = CameraEngine(PoseCamSettings())
    engine.stop()
    assert engine.running is False
