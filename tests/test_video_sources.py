import numpy as np
import pytest

import posecam.core.video_sources.base as vs


class _FakeCap:
    def __init__(self, opened: bool, frames=None, width=0, height=0, fps=0.0):
        self._opened = opened
        self._frames = list(frames or [])
        self._all = list(self._frames)
        self.props = {
            vs.cv2.CAP_PROP_FRAME_WIDTH: width,
            vs.cv2.CAP_PROP_FRAME_HEIGHT: height,
            vs.cv2.CAP_PROP_FPS: fps,
        }
        self.released = False
        self.set_calls = []

    def isOpened(self):
        return self._opened

    def read(self):
        if not self._frames:
            return False, None
        return True, self._frames.pop(0)

    def get(self, prop):
        return self.props.get(prop, 0)

    def set(self, prop, value):
        self.set_calls.append((prop, value))
        if prop == vs.cv2.CAP_PROP_POS_FRAMES:
            self._frames = list(self._all)
        elif prop in self.props:
            self.props[prop] = value
        return True

    def release(self):
        self.released = True


def test_opencv_source_read_and_close(monkeypatch):
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    cap = _FakeCap(opened=True, frames=[frame], width=640, height=480)
    monkeypatch.setattr(vs.cv2, "VideoCapture", lambda *_a: cap)

    src = vs.OpenCVSource("x")
    assert src.preview_size == (640, 480)
    assert src.read() is frame
    assert src.read() is None
    src.close()
    assert cap.released is True


def test_opencv_source_resizes_to_negotiated_size(monkeypatch):
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    cap = _FakeCap(opened=True, frames=[frame], width=640, height=480)
    monkeypatch.setattr(vs.cv2, "VideoCapture", lambda *_a: cap)
    assert vs.OpenCVSource("x").read().shape == (480, 640, 3)


def test_unknown_capture_size_falls_back_to_desired_preview(monkeypatch):
    monkeypatch.setattr(vs.cv2, "VideoCapture", lambda *_a: _FakeCap(opened=True))
    assert vs.OpenCVSource("x").preview_size == (640, 480)


def test_opencv_source_raises_when_not_opened(monkeypatch):
    monkeypatch.setattr(vs.cv2, "VideoCapture", lambda *_a, **_k: _FakeCap(opened=False))
    with pytest.raises(RuntimeError):
        vs.OpenCVSource("x")


def test_webcam_requests_preview_size(monkeypatch):
    cap = _FakeCap(opened=True)
    monkeypatch.setattr(vs.cv2, "VideoCapture", lambda *_a: cap)
    src = vs.WebcamSource(0, (320, 240))
    assert (vs.cv2.CAP_PROP_FRAME_WIDTH, 320) in cap.set_calls
    assert (vs.cv2.CAP_PROP_FRAME_HEIGHT, 240) in cap.set_calls
    assert src.preview_size == (320, 240)


def test_webcam_raises_when_no_backend_opens(monkeypatch):
    monkeypatch.setattr(vs.cv2, "VideoCapture", lambda *_a: _FakeCap(opened=False))
    with pytest.raises(RuntimeError):
        vs.WebcamSource(3)


def test_file_source_rewinds_at_eof(monkeypatch):
    frames = [np.full((480, 640, 3), i, dtype=np.uint8) for i in range(2)]
    cap = _FakeCap(opened=True, frames=frames, width=640, height=480)
    monkeypatch.setattr(vs.cv2, "VideoCapture", lambda *_a: cap)

    src = vs.FileSource("clip.mp4")
    seen = [int(src.read()[0, 0, 0]) for _ in range(3)]
    assert seen == [0, 1, 0]


def test_file_source_without_loop_ends(monkeypatch):
    cap = _FakeCap(opened=True, frames=[np.zeros((480, 640, 3), dtype=np.uint8)], width=640, height=480)
    monkeypatch.setattr(vs.cv2, "VideoCapture", lambda *_a: cap)

    src = vs.FileSource("clip.mp4", loop=False)
    assert src.read() is not None
    assert src.read() is None
