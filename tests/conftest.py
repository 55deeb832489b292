import cv2
import numpy as np
import pytest

from backend import app as app_module


def encode_png(pixels):
    """Encode an RGB array as PNG bytes"""
    ok, buffer = cv2.imencode('.png', cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR))
    assert ok
    return buffer.tobytes()


@pytest.fixture
def half_dark_plan():
    """20x20 plan whose top half is black and bottom half white"""
    pixels = np.full((20, 20, 3), 255, dtype=np.uint8)
    pixels[:10] = 0
    return pixels


@pytest.fixture
def folders(tmp_path, monkeypatch):
    uploads = tmp_path / 'uploads'
    outputs = tmp_path / 'outputs'
    uploads.mkdir()
    outputs.mkdir()
    monkeypatch.setitem(app_module.app.config, 'UPLOAD_FOLDER', str(uploads))
    monkeypatch.setitem(app_module.app.config, 'OUTPUT_FOLDER', str(outputs))
    return uploads, outputs


@pytest.fixture
def client(folders, monkeypatch):
    monkeypatch.setitem(app_module.app.config, 'TESTING', True)
    monkeypatch.setitem(app_module.app.config, 'HF_API_TOKEN', '')
    monkeypatch.setitem(app_module.app.config, 'SAMPLE_FALLBACK', True)
    monkeypatch.setitem(app_module.app.config, 'SAMPLE_STRIDE', 1)
    app_module.analyses.clear()
    with app_module.app.test_client() as client:
        yield client
    app_module.analyses.clear()
