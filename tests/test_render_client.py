import base64

import pytest
import requests

from utils import render_client
from utils.render_client import (RenderError, RenderSettings, build_payload,
                                 canned_render, compose_prompt, request_render)


class FakeResponse:
    def __init__(self, status_code=200, content=b"", text="", headers=None):
        self.status_code = status_code
        self.content = content
        self.text = text
        self.headers = headers or {}

    @property
    def ok(self):
        return self.status_code < 400


@pytest.fixture
def captured(monkeypatch):
    calls = []

    def install(response=None, error=None):
        def fake_post(url, headers=None, json=None, timeout=None):
            calls.append({'url': url, 'headers': headers, 'json': json, 'timeout': timeout})
            if error is not None:
                raise error
            return response

        monkeypatch.setattr(render_client.requests, 'post', fake_post)
        return calls

    return install


def test_request_render_posts_prompt_and_image(captured):
    calls = captured(FakeResponse(content=b"\x89PNG render", headers={"Content-Type": "image/png"}))

    content, content_type = request_render("hf_token", "cozy loft", b"source-bytes")

    assert content == b"\x89PNG render"
    assert content_type == "image/png"
    call = calls[0]
    assert call['url'] == "https://api-inference.huggingface.co/models/runwayml/stable-diffusion-v1-5"
    assert call['headers'] == {
        "Authorization": "Bearer hf_token",
        "Content-Type": "application/json",
        "X-Wait-For-Model": "true",
    }
    assert call['json']['inputs'] == "cozy loft"
    assert base64.b64decode(call['json']['image']) == b"source-bytes"
    assert call['json']['parameters'] == {
        "negative_prompt": render_client.DEFAULT_NEGATIVE_PROMPT,
        "num_inference_steps": 40,
        "strength": 0.5,
        "guidance_scale": 8.5,
    }
    assert call['timeout'] is None


def test_request_render_uses_settings(captured):
    calls = captured(FakeResponse(content=b"jpg", headers={"Content-Type": "image/jpeg; charset=binary"}))
    settings = RenderSettings(model="acme/plan2room", base_url="http://localhost:8080/models/", timeout=12.5)

    _, content_type = request_render("key", "prompt", settings=settings)

    assert content_type == "image/jpeg"
    assert calls[0]['url'] == "http://localhost:8080/models/acme/plan2room"
    assert calls[0]['timeout'] == 12.5
    assert "image" not in calls[0]['json']


def test_non_ok_response_raises_with_status_and_body(captured):
    captured(FakeResponse(status_code=503, text='{"error":"Model is currently loading"}'))

    with pytest.raises(RenderError) as excinfo:
        request_render("key", "prompt", b"img")

    assert str(excinfo.value) == 'HF API: 503 - {"error":"Model is currently loading"}'


def test_transport_error_raises_render_error(captured):
    calls = captured(error=requests.ConnectionError("connection refused"))

    with pytest.raises(RenderError, match="connection refused"):
        request_render("key", "prompt")

    # no retry
    assert len(calls) == 1


def test_build_payload_without_image():
    payload = build_payload("just text")

    assert payload["inputs"] == "just text"
    assert "image" not in payload


def test_compose_prompt_appends_context_snippet():
    context = "K" * 150

    prompt = compose_prompt("Modern kitchen", context)

    assert prompt == f"Modern kitchen Match the exact floorplan layout: {'K' * 100}."


def test_compose_prompt_without_context():
    assert compose_prompt("Modern kitchen", "") == "Modern kitchen"
    assert compose_prompt("", "BEDROOM 1") == "BEDROOM 1"


@pytest.fixture
def samples(tmp_path):
    (tmp_path / "default.svg").write_text("<svg>default</svg>")
    (tmp_path / "living_room.svg").write_text("<svg>living</svg>")
    return tmp_path


def test_canned_render_by_room(samples):
    data, content_type = canned_render(str(samples), "Living Room")

    assert data == b"<svg>living</svg>"
    assert content_type == "image/svg+xml"


@pytest.mark.parametrize("room", [None, "", "Garage"])
def test_canned_render_defaults(samples, room):
    data, _ = canned_render(str(samples), room)

    assert data == b"<svg>default</svg>"


def test_canned_render_without_samples(tmp_path):
    with pytest.raises(RenderError):
        canned_render(str(tmp_path), "Bedroom")
