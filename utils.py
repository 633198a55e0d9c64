"""
Utility helpers for the Character DNA Prompt Suite.

Handles:
  - API client initialization with fallback to env‑var and request timeout
  - Robust Tensor ↔ PIL conversions respecting ComfyUI's [B,H,W,C] format
  - Upload downscaling for analysis inputs
  - Response image / text extraction from Gemini SDK parts
"""

import os
from io import BytesIO
from typing import List

import numpy as np
import torch
from PIL import Image

from google import genai
from google.genai import types


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)
RETRYABLE_KEYWORDS = (
    "service unavailable", "overloaded", "rate limit", "too many requests",
    "network", "econnreset", "etimedout", "temporarily unavailable",
)
MAX_RETRIES = 3
RETRY_BASE_DELAY = 3.0   # seconds
RETRY_MAX_DELAY = 30.0   # seconds
RETRY_JITTER = 0.25      # fraction of the exponential delay
API_TIMEOUT_MS = 180_000
MAX_IMAGE_EDGE = 1536    # px, long edge of uploaded references


# ---------------------------------------------------------------------------
# Client helpers
# ---------------------------------------------------------------------------
def get_gemini_client(api_key: str = "", timeout_ms: int = API_TIMEOUT_MS) -> genai.Client:
    """
    Create a `genai.Client`.
    Priority: widget value → GEMINI_API_KEY env‑var.
    Every request made through the client is bounded by *timeout_ms*.
    """
    key = api_key.strip() if api_key else ""
    if not key:
        key = os.environ.get("GEMINI_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "No API key provided. Either enter it in the node widget "
            "or set the GEMINI_API_KEY environment variable."
        )
    if len(key) < 10:
        raise ValueError("API key appears invalid (too short). Please check your key.")
    return genai.Client(
        api_key=key,
        http_options=types.HttpOptions(timeout=int(timeout_ms)),
    )


# ---------------------------------------------------------------------------
# Tensor ↔ PIL conversions
# ---------------------------------------------------------------------------
def tensor_batch_to_pil_list(tensor: torch.Tensor) -> List[Image.Image]:
    """
    Convert a ComfyUI image tensor **[B, H, W, C]** (float 0‑1)
    into a list of PIL RGB images.
    """
    if tensor.dim() == 3:
        tensor = tensor.unsqueeze(0)

    images: List[Image.Image] = []
    for i in range(tensor.shape[0]):
        frame = tensor[i]  # [H, W, C]
        np_img = (frame.cpu().numpy() * 255.0).clip(0, 255).astype(np.uint8)
        if np_img.shape[-1] == 4:
            np_img = np_img[:, :, :3]
        elif np_img.shape[-1] == 1:
            np_img = np.concatenate([np_img] * 3, axis=-1)
        images.append(Image.fromarray(np_img, "RGB"))
    return images


def pil_to_tensor(pil_image: Image.Image) -> torch.Tensor:
    """
    Convert a single PIL Image → ComfyUI tensor **[1, H, W, C]** (float 0‑1, RGB).
    """
    img = pil_image.convert("RGB")
    np_arr = np.array(img).astype(np.float32) / 255.0
    return torch.from_numpy(np_arr).unsqueeze(0)


def pil_list_to_tensor_batch(images: List[Image.Image]) -> torch.Tensor:
    """
    Stack several PIL images into a single batch tensor **[N, H, W, C]**.
    All images are resized to match the first image's dimensions.
    """
    if not images:
        return make_blank_image_tensor(64, 64)

    ref = images[0].convert("RGB")
    ref_w, ref_h = ref.size
    tensors = [pil_to_tensor(ref)]

    for img in images[1:]:
        img_rgb = img.convert("RGB").resize((ref_w, ref_h), Image.LANCZOS)
        tensors.append(pil_to_tensor(img_rgb))

    return torch.cat(tensors, dim=0)


def downscale_image(image: Image.Image, max_edge: int = MAX_IMAGE_EDGE) -> Image.Image:
    """Shrink *image* so its long edge is at most *max_edge*; never upscales."""
    w, h = image.size
    long_edge = max(w, h)
    if long_edge <= max_edge:
        return image
    scale = max_edge / long_edge
    new_size = (max(1, round(w * scale)), max(1, round(h * scale)))
    print(f"[DNA Utils] Downscaling reference {w}x{h} → {new_size[0]}x{new_size[1]}")
    return image.resize(new_size, Image.LANCZOS)


def make_blank_image_tensor(width: int = 512, height: int = 512) -> torch.Tensor:
    """Return a solid‑black [1, H, W, 3] tensor (fallback on error)."""
    return torch.zeros((1, height, width, 3))


# ---------------------------------------------------------------------------
# Gemini response → PIL / text extraction
# ---------------------------------------------------------------------------
def _iter_parts(response):
    if not response or not getattr(response, "candidates", None):
        return
    for candidate in response.candidates:
        content = getattr(candidate, "content", None)
        if not content or not getattr(content, "parts", None):
            continue
        yield from content.parts


def extract_images_from_response(response) -> List[Image.Image]:
    """
    Walk the `response.candidates[*].content.parts` and collect any images
    returned as inline‑data blobs.
    """
    images: List[Image.Image] = []
    for part in _iter_parts(response):
        inline = getattr(part, "inline_data", None)
        if inline is None:
            continue
        data = getattr(inline, "data", None)
        if not data:
            continue
        try:
            images.append(Image.open(BytesIO(data)).convert("RGB"))
        except (OSError, ValueError) as exc:
            print(f"[DNA Utils] Failed to decode image part: {exc}")
    return images


def extract_text_from_response(response) -> str:
    """
    Collect all text parts from a Gemini response.
    """
    texts: List[str] = [
        part.text
        for part in _iter_parts(response)
        if getattr(part, "text", None) and not getattr(part, "thought", False)
    ]
    return "\n".join(texts)


# ---------------------------------------------------------------------------
# Safety‑settings builder
# ---------------------------------------------------------------------------
HARM_CATEGORIES = [
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
]

SAFETY_LEVEL_MAP = {
    "block_none": "BLOCK_NONE",
    "block_few": "BLOCK_ONLY_HIGH",
    "block_some": "BLOCK_MEDIUM_AND_ABOVE",
    "block_most": "BLOCK_LOW_AND_ABOVE",
}


def build_safety_settings(level: str = "block_some") -> list:
    """
    Convert a user‑friendly safety label into a list of SDK SafetySettings
    for all harm categories.

    Levels:
      block_none  → nothing blocked
      block_few   → only high‑probability harm blocked
      block_some  → medium + high blocked (default)
      block_most  → low + medium + high blocked
    """
    threshold_name = SAFETY_LEVEL_MAP.get(level, "BLOCK_MEDIUM_AND_ABOVE")
    return [
        types.SafetySetting(category=cat, threshold=threshold_name)
        for cat in HARM_CATEGORIES
    ]
