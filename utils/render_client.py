import base64
import logging
import mimetypes
import os
import re
from dataclasses import dataclass
from typing import Optional, Tuple

import requests

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "runwayml/stable-diffusion-v1-5"
DEFAULT_BASE_URL = "https://api-inference.huggingface.co/models"
DEFAULT_NEGATIVE_PROMPT = "blurry, low quality, distortion, bad anatomy, extra walls, missing doors"
CONTEXT_LIMIT = 100
DEFAULT_SAMPLE = "default.svg"


class RenderError(Exception):
    """Raised when the inference endpoint cannot produce a render"""


@dataclass
class RenderSettings:
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    negative_prompt: str = DEFAULT_NEGATIVE_PROMPT
    num_inference_steps: int = 40
    strength: float = 0.5  # lower keeps closer to the source walls
    guidance_scale: float = 8.5
    timeout: Optional[float] = None

    @property
    def endpoint(self):
        return f"{self.base_url.rstrip('/')}/{self.model}"


def compose_prompt(prompt, text_context=""):
    """Append the leading part of the OCR context to the user's prompt"""
    prompt = (prompt or "").strip()
    snippet = (text_context or "")[:CONTEXT_LIMIT].strip()
    if not snippet:
        return prompt
    return f"{prompt} Match the exact floorplan layout: {snippet}." if prompt else snippet


def build_payload(prompt, image_bytes=None, settings=None):
    settings = settings or RenderSettings()
    payload = {
        "inputs": prompt,
        "parameters": {
            "negative_prompt": settings.negative_prompt,
            "num_inference_steps": settings.num_inference_steps,
            "strength": settings.strength,
            "guidance_scale": settings.guidance_scale,
        },
    }
    if image_bytes:
        payload["image"] = base64.b64encode(image_bytes).decode('utf-8')
    return payload


def request_render(api_key, prompt, image_bytes=None, settings=None) -> Tuple[bytes, str]:
    """
    POST a prompt and optional source image to the hosted inference endpoint.

    Args:
        api_key (str): Bearer token for the inference service
        prompt (str): Text prompt
        image_bytes (bytes, optional): Encoded source image for image-to-image
        settings (RenderSettings, optional): Model and generation parameters

    Returns:
        tuple: (image bytes, content type) of the rendered result

    Raises:
        RenderError: if the request fails or the endpoint answers non-OK
    """
    settings = settings or RenderSettings()
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "X-Wait-For-Model": "true",
    }
    payload = build_payload(prompt, image_bytes, settings)

    logger.info(f"Requesting render from {settings.endpoint}")
    try:
        response = requests.post(settings.endpoint, headers=headers, json=payload, timeout=settings.timeout)
    except requests.RequestException as e:
        raise RenderError(f"HF API: {e}") from e

    if not response.ok:
        raise RenderError(f"HF API: {response.status_code} - {response.text}")

    content_type = response.headers.get("Content-Type", "image/jpeg").split(";")[0].strip()
    return response.content, content_type


def _slug(name):
    return re.sub(r'[^a-z0-9]+', '_', (name or "").lower()).strip('_')


def canned_render(samples_dir, room=None) -> Tuple[bytes, str]:
    """Return a bundled sample render for the room type, or the default one"""
    path = os.path.join(samples_dir, f"{_slug(room)}.svg") if room else None
    if not path or not os.path.exists(path):
        path = os.path.join(samples_dir, DEFAULT_SAMPLE)
    if not os.path.exists(path):
        raise RenderError(f"No sample render available in {samples_dir}")

    with open(path, "rb") as f:
        data = f.read()
    content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return data, content_type
