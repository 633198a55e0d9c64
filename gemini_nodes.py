"""
ComfyUI Character DNA Prompt Suite: Nodes

Four nodes around the Character DNA pipeline:
  1. DNA_Image_Analyzer   – Images → metadata JSON, description, MJ prompt
  2. DNA_Prompt_Compiler  – Metadata JSON → Universal / SD‑MJ prompt
  3. DNA_Identity_Lock    – Metadata JSON → identity clause + drift negatives
  4. DNA_Locked_ImgGen    – Metadata JSON → image with the identity locked
"""

import json
import sys
import threading
import traceback
from typing import Optional, Tuple

import torch

from .gemini_service import (
    FALLBACK_MODEL,
    IMAGE_GEN_MODELS,
    TEXT_MODELS,
    ContentBlockedError,
    GenerationCancelled,
    GenerationError,
    RateLimitedError,
    RetryConfig,
    ServiceOverloadedError,
    analyze_images,
    build_metadata_image_prompt,
    generate_image,
)
from .hydrate_identity import build_locked_identity_prompt_pair, get_drift_negatives, hydrate_identity
from .metadata_normalizers import calculate_completeness, parse_metadata_json
from .metadata_schema import IMAGE_LABEL_OPTIONS, ImageLabel
from .prompt_generators import (
    EXPORT_FORMATS,
    FORMAT_SDMJ,
    FORMAT_UNIVERSAL,
    ExportOptions,
    build_identity_lock,
    generate_prompt,
    get_default_export_options,
)
from .utils import (
    API_TIMEOUT_MS,
    MAX_RETRIES,
    get_gemini_client,
    make_blank_image_tensor,
    pil_list_to_tensor_batch,
    tensor_batch_to_pil_list,
)

CATEGORY = "Character_DNA_Suite"

# ── Dropdown options ────────────────────────────────────────────────────
ASPECT_RATIOS_IMAGE = ["from metadata", "1:1", "16:9", "9:16", "4:3", "3:4", "2:3", "3:2"]
SAFETY_LEVELS = ["block_none", "block_few", "block_some", "block_most"]
IMAGE_SIZES = ["1K", "2K", "4K"]
IMAGE_PROMPT_SOURCES = [FORMAT_UNIVERSAL, FORMAT_SDMJ, "metadata json"]


# ---------------------------------------------------------------------------
#  Shared error handler
# ---------------------------------------------------------------------------
def _handle_api_error(exc: Exception, node_label: str):
    """Map common API errors to user‑friendly messages and re‑raise."""
    msg = str(exc)
    print(f"[{node_label}] Error: {msg}", file=sys.stderr)
    print(f"[{node_label}] Traceback:\n{traceback.format_exc()}", file=sys.stderr)

    low = msg.lower()
    if isinstance(exc, GenerationCancelled):
        raise RuntimeError("⏹️ Generation cancelled.") from exc
    if isinstance(exc, ContentBlockedError):
        raise RuntimeError(
            "⚠️ Content blocked by safety filters. "
            "Try setting Safety to 'block_none' or adjusting your inputs."
        ) from exc
    if isinstance(exc, (ServiceOverloadedError, RateLimitedError)):
        raise RuntimeError(f"❌ {msg}") from exc
    if isinstance(exc, GenerationError):
        raise RuntimeError(f"❌ {msg}") from exc
    if "API_KEY_INVALID" in msg or "API key not valid" in msg:
        raise RuntimeError("❌ Invalid API key. Check your key in Google AI Studio.") from exc
    if "UNAUTHENTICATED" in msg:
        raise RuntimeError("❌ Authentication failed. Verify API key permissions.") from exc
    if "RESOURCE_EXHAUSTED" in msg or "quota" in low:
        raise RuntimeError("❌ Quota exceeded. Check usage limits in Google AI Studio.") from exc
    if "PERMISSION_DENIED" in msg:
        raise RuntimeError("❌ Permission denied. Your key may lack access to this model.") from exc
    if "rate limit" in low or "429" in msg:
        raise RuntimeError("❌ Rate limit exceeded. Wait a moment and retry.") from exc
    if "safety" in low or "blocked" in low:
        raise RuntimeError(
            "⚠️ Content blocked by safety filters. "
            "Try setting Safety to 'block_none' or adjusting your inputs."
        ) from exc
    raise RuntimeError(f"Gemini API error: {msg}") from exc


def parse_image_labels(labels: str, count: int):
    """
    Comma-separated label list → one `ImageLabel` per image.
    Known types ("style", "subject", …) map to their label; anything else
    is used verbatim. Missing entries default to a general reference.
    """
    entries = [e.strip() for e in (labels or "").split(",")]
    parsed = []
    for i in range(count):
        entry = entries[i] if i < len(entries) else ""
        key = entry.lower()
        if not entry:
            parsed.append(ImageLabel())
        elif key in IMAGE_LABEL_OPTIONS:
            parsed.append(ImageLabel(type=key))
        else:
            parsed.append(ImageLabel(custom=entry))
    return parsed


def _api_key_input():
    return ("STRING", {
        "default": "",
        "tooltip": "Gemini API key (falls back to GEMINI_API_KEY env var).",
        "password": True,
    })


def _metadata_input():
    return ("STRING", {
        "multiline": True,
        "default": "",
        "forceInput": True,
        "tooltip": "Metadata JSON from the DNA Image Analyzer (or hand-written).",
    })


# ═══════════════════════════════════════════════════════════════════════════
# Node 1: Image Analyzer
# ═══════════════════════════════════════════════════════════════════════════
class DNA_Image_Analyzer:
    """
    Extract the structured style / Character DNA profile of one or more
    reference images, plus a prose description and an optional MJ prompt.

    ComfyUI never passes `cancel_event`; it is there for Python callers that
    drive the node directly and want to abort retries and backoff waits.
    """

    @classmethod
    def INPUT_TYPES(cls):
        return {
            "required": {
                "images": ("IMAGE", {
                    "tooltip": "Reference image(s). A batch is blended into one analysis.",
                }),
                "labels": ("STRING", {
                    "default": "general",
                    "tooltip": (
                        "Comma-separated role per image: general, style, composition, color, "
                        "subject, texture, lighting (or free text). A single 'subject' image "
                        "enables Character DNA extraction."
                    ),
                }),
                "guidance": ("STRING", {
                    "multiline": True,
                    "default": "",
                    "tooltip": "Optional directive that overrides default aesthetic assumptions.",
                }),
                "model_name": (TEXT_MODELS, {
                    "default": TEXT_MODELS[0],
                    "tooltip": "Primary Gemini model. Falls back to Flash on timeout / overload.",
                }),
                "compile_mj": ("BOOLEAN", {
                    "default": True,
                    "tooltip": "Run the extra Midjourney compilation call (best effort).",
                }),
                "safety": (SAFETY_LEVELS, {
                    "default": "block_none",
                    "tooltip": "Content safety filter level.",
                }),
                "max_retries": ("INT", {
                    "default": MAX_RETRIES,
                    "min": 0,
                    "max": 10,
                    "tooltip": "Retries for transient errors (429 / 5xx / timeouts / empty responses).",
                }),
                "timeout_seconds": ("INT", {
                    "default": API_TIMEOUT_MS // 1000,
                    "min": 10,
                    "max": 600,
                    "tooltip": "Per-request timeout.",
                }),
            },
            "optional": {
                "api_key": _api_key_input(),
            },
        }

    RETURN_TYPES = ("STRING", "STRING", "STRING", "STRING", "INT")
    RETURN_NAMES = ("metadata_json", "description", "mj_prompt", "mj_negative", "completeness")
    FUNCTION = "analyze"
    CATEGORY = CATEGORY
    DESCRIPTION = "Analyze reference images into Character DNA metadata JSON and a visual description."
    OUTPUT_NODE = True

    def analyze(
        self,
        images: torch.Tensor,
        labels: str = "general",
        guidance: str = "",
        model_name: str = TEXT_MODELS[0],
        compile_mj: bool = True,
        safety: str = "block_none",
        max_retries: int = MAX_RETRIES,
        timeout_seconds: int = API_TIMEOUT_MS // 1000,
        api_key: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[str, str, str, str, int]:
        try:
            client = get_gemini_client(api_key, timeout_ms=timeout_seconds * 1000)
            pil_images = tensor_batch_to_pil_list(images)
            image_labels = parse_image_labels(labels, len(pil_images))
            print(f"[DNA Analyzer] {len(pil_images)} image(s) | Model: {model_name} "
                  f"| Labels: {', '.join(lbl.text for lbl in image_labels)}")

            result = analyze_images(
                client,
                pil_images,
                labels=image_labels,
                guidance=guidance,
                model=model_name,
                fallback_model=FALLBACK_MODEL,
                compile_mj=compile_mj,
                safety=safety,
                retry_config=RetryConfig(max_retries=max_retries),
                cancel_event=cancel_event,
            )

            metadata_json = json.dumps(result.metadata.to_dict(), indent=2, ensure_ascii=False)
            completeness = calculate_completeness(result.metadata)
            mj_positive = result.mj_prompt.positive if result.mj_prompt else ""
            mj_negative = result.mj_prompt.negative if result.mj_prompt else ""
            identity = "yes" if result.metadata.subject.identity else "no"
            print(f"[DNA Analyzer] ✅ Completeness {completeness}% | Identity: {identity}")
            return (metadata_json, result.description, mj_positive, mj_negative, completeness)

        except Exception as exc:
            _handle_api_error(exc, "DNA_Image_Analyzer")
            return ("{}", "(Error: see console for details.)", "", "", 0)


# ═══════════════════════════════════════════════════════════════════════════
# Node 2: Prompt Compiler
# ═══════════════════════════════════════════════════════════════════════════
class DNA_Prompt_Compiler:
    """
    Render metadata JSON into a text‑to‑image prompt. No API call.
    • universal – every enabled field, `--neg` block
    • sd-mj     – position‑weighted slots, `--no` / `--ar` parameters
    """

    @classmethod
    def INPUT_TYPES(cls):
        return {
            "required": {
                "metadata_json": _metadata_input(),
                "format": (EXPORT_FORMATS, {
                    "default": FORMAT_UNIVERSAL,
                    "tooltip": "Prompt layout.",
                }),
                "include_negative": ("BOOLEAN", {
                    "default": True,
                    "tooltip": "Append the negative block (metadata + identity drift negatives).",
                }),
                "include_text_content": ("BOOLEAN", {
                    "default": False,
                    "tooltip": "Universal only: include visible text overlay.",
                }),
            },
            "optional": {
                "sections_override": ("STRING", {
                    "multiline": True,
                    "default": "",
                    "tooltip": (
                        'Optional JSON of section toggles, e.g. {"palette": false} or '
                        '{"styleAnchor": false}. Unknown keys are ignored.'
                    ),
                }),
            },
        }

    RETURN_TYPES = ("STRING", "INT")
    RETURN_NAMES = ("prompt", "completeness")
    FUNCTION = "compile"
    CATEGORY = CATEGORY
    DESCRIPTION = "Compile Character DNA metadata JSON into a Universal or SD/MJ prompt."

    def compile(
        self,
        metadata_json: str,
        format: str = FORMAT_UNIVERSAL,
        include_negative: bool = True,
        include_text_content: bool = False,
        sections_override: str = "",
    ) -> Tuple[str, int]:
        metadata = parse_metadata_json(metadata_json)
        options = build_export_options(format, include_negative, include_text_content, sections_override)
        prompt = generate_prompt(metadata, options)
        print(f"[DNA Compiler] {format}: {len(prompt)} characters")
        return (prompt, calculate_completeness(metadata))


def build_export_options(
    format: str,
    include_negative: bool = True,
    include_text_content: bool = False,
    sections_override: str = "",
) -> ExportOptions:
    """Node widgets → `ExportOptions`. Invalid override JSON is ignored."""
    overrides = {}
    if sections_override and sections_override.strip():
        try:
            loaded = json.loads(sections_override)
            if isinstance(loaded, dict):
                overrides = loaded
        except ValueError as exc:
            print(f"[DNA Compiler] Ignoring invalid sections_override: {exc}")

    options = get_default_export_options(format)
    universal = {"negative": include_negative, "text_content": include_text_content, **overrides}
    sdmj = {"negative": include_negative, **overrides}
    options.universal_sections = universal
    options.sdmj_sections = sdmj
    return options


# ═══════════════════════════════════════════════════════════════════════════
# Node 3: Identity Lock
# ═══════════════════════════════════════════════════════════════════════════
class DNA_Identity_Lock:
    """
    Hydrate the subject identity of a metadata JSON: every eye / skin /
    hair / face attribute is asserted and its three likeliest drifts are
    negated.
    """

    @classmethod
    def INPUT_TYPES(cls):
        return {
            "required": {
                "metadata_json": _metadata_input(),
                "max_negatives": ("INT", {
                    "default": 15,
                    "min": 1,
                    "max": 60,
                    "tooltip": "Cap on the drift negative list.",
                }),
            },
        }

    RETURN_TYPES = ("STRING", "STRING", "STRING", "STRING")
    RETURN_NAMES = ("identity_lock", "positive_phrases", "drift_negatives", "locked_identity_json")
    FUNCTION = "lock"
    CATEGORY = CATEGORY
    DESCRIPTION = "Turn a subject identity into an [IDENTITY: …] clause plus drift negatives."

    def lock(self, metadata_json: str, max_negatives: int = 15) -> Tuple[str, str, str, str]:
        identity = parse_metadata_json(metadata_json).subject.identity
        if identity is None:
            print("[DNA Identity Lock] No subject identity in metadata (needs a single 'subject' image).")
            return ("", "", "", "{}")

        locked = hydrate_identity(identity)
        pair = build_locked_identity_prompt_pair(locked)
        negatives = get_drift_negatives(identity, max_negatives)
        print(f"[DNA Identity Lock] {len(pair.positive)} phrases | {len(negatives)} negatives")
        return (
            build_identity_lock(identity),
            ", ".join(pair.positive),
            ", ".join(negatives),
            json.dumps(locked.to_dict(), indent=2, ensure_ascii=False),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Node 4: Locked Image Generator
# ═══════════════════════════════════════════════════════════════════════════
class DNA_Locked_ImgGen:
    """
    Generate an image from Character DNA metadata.
    The prompt is compiled from the metadata so the identity lock and its
    drift negatives travel with every generation.

    As with the analyzer, `cancel_event` is only set by Python callers.
    """

    @classmethod
    def INPUT_TYPES(cls):
        return {
            "required": {
                "metadata_json": _metadata_input(),
                "prompt_source": (IMAGE_PROMPT_SOURCES, {
                    "default": FORMAT_UNIVERSAL,
                    "tooltip": "Compiled Universal / SD‑MJ prompt, or the raw metadata JSON.",
                }),
                "model_name": (IMAGE_GEN_MODELS, {
                    "default": IMAGE_GEN_MODELS[0],
                    "tooltip": "Gemini image model. Falls back to Flash Image on timeout / overload.",
                }),
                "aspect_ratio": (ASPECT_RATIOS_IMAGE, {
                    "default": "from metadata",
                    "tooltip": "Output aspect ratio. 'from metadata' uses meta.aspect_ratio.",
                }),
                "image_size": (IMAGE_SIZES, {
                    "default": "1K",
                    "tooltip": "Output resolution. 2K/4K only supported by gemini-3-pro-image-preview.",
                }),
                "safety": (SAFETY_LEVELS, {
                    "default": "block_none",
                    "tooltip": "Content safety filter level.",
                }),
                "seed": ("INT", {
                    "default": 0,
                    "min": 0,
                    "max": 2147483647,
                    "control_after_generate": "randomize",
                    "tooltip": "Seed for reproducibility (0 = random).",
                }),
            },
            "optional": {
                "api_key": _api_key_input(),
                "extra_prompt": ("STRING", {
                    "multiline": True,
                    "default": "",
                    "tooltip": "Appended to the compiled prompt.",
                }),
                "reference_image": ("IMAGE", {
                    "tooltip": "Optional subject reference passed alongside the prompt.",
                }),
            },
        }

    RETURN_TYPES = ("IMAGE", "STRING")
    RETURN_NAMES = ("image", "prompt")
    FUNCTION = "generate"
    CATEGORY = CATEGORY
    DESCRIPTION = "Generate an image from Character DNA metadata with identity lock applied."

    @classmethod
    def VALIDATE_INPUTS(cls, model_name="", image_size="1K", **kwargs):
        if image_size != "1K" and "3-pro" not in model_name:
            return (f"❌ image_size '{image_size}' requires gemini-3-pro-image-preview. "
                    f"{model_name} only supports 1K.")
        return True

    def generate(
        self,
        metadata_json: str,
        prompt_source: str = FORMAT_UNIVERSAL,
        model_name: str = IMAGE_GEN_MODELS[0],
        aspect_ratio: str = "from metadata",
        image_size: str = "1K",
        safety: str = "block_none",
        seed: int = 0,
        api_key: str = "",
        extra_prompt: str = "",
        reference_image: Optional[torch.Tensor] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[torch.Tensor, str]:
        metadata = parse_metadata_json(metadata_json)
        prompt = build_image_prompt(metadata, prompt_source, extra_prompt)
        ratio = resolve_aspect_ratio(aspect_ratio, metadata.meta.aspect_ratio)

        try:
            client = get_gemini_client(api_key)
            references = tensor_batch_to_pil_list(reference_image) if reference_image is not None else []
            print(f"[DNA Locked ImgGen] Source: {prompt_source} | Model: {model_name} "
                  f"| AR: {ratio} | References: {len(references)}")

            images = generate_image(
                client,
                prompt,
                model=model_name,
                reference_images=references,
                aspect_ratio=ratio,
                image_size=image_size,
                safety=safety,
                seed=seed,
                cancel_event=cancel_event,
            )
            print(f"[DNA Locked ImgGen] ✅ {len(images)} image(s)")
            return (pil_list_to_tensor_batch(images), prompt)

        except Exception as exc:
            _handle_api_error(exc, "DNA_Locked_ImgGen")
            return (make_blank_image_tensor(), prompt)


def build_image_prompt(metadata, prompt_source: str, extra_prompt: str = "") -> str:
    if prompt_source in (FORMAT_UNIVERSAL, FORMAT_SDMJ):
        prompt = generate_prompt(metadata, get_default_export_options(prompt_source))
    else:
        prompt = build_metadata_image_prompt(metadata)
    if extra_prompt and extra_prompt.strip():
        prompt = f"{prompt}\n\n{extra_prompt.strip()}"
    return prompt


def resolve_aspect_ratio(choice: str, metadata_ratio: str) -> str:
    """Widget choice, or the metadata ratio when it is one the API accepts."""
    if choice != "from metadata":
        return choice
    ratio = (metadata_ratio or "").strip()
    return ratio if ratio in ASPECT_RATIOS_IMAGE[1:] else "1:1"
