"""
Gemini Service
──────────────
Resilient wrapper around `client.models.generate_content`.

Every remote call runs through one retry state machine:

    ATTEMPTING ──ok──────────────▶ SUCCEEDED
        │ transient                      ▲
        ▼                                │
     BACKOFF ──(wait, cancellable)──▶ ATTEMPTING
        │ retries used up
        ▼
    FAILED_TRANSIENT      FAILED_FATAL      CANCELLED

Transient: HTTP 429/500/502/503/504, network errors, timeouts, empty
responses. Fatal: safety blocks, non-STOP finish reasons, anything else.
A `threading.Event` cancels at every transition and wakes backoff waits.
"""

import json
import random
import re
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Union

from google.genai import types
from PIL import Image

from .metadata_normalizers import normalize_metadata, strip_code_fences
from .metadata_schema import AnalysisResult, ImageLabel, ImageMetadata, MJCompilerResult
from .system_prompts import (
    DESC_SYSTEM_PROMPT,
    IMAGE_GEN_PROMPT_PREFIX,
    JSON_SYSTEM_PROMPT,
    MJ_COMPILER_SYSTEM_PROMPT,
    build_json_correction_prompt,
)
from .utils import (
    MAX_RETRIES,
    RETRYABLE_KEYWORDS,
    RETRYABLE_STATUS_CODES,
    RETRY_BASE_DELAY,
    RETRY_JITTER,
    RETRY_MAX_DELAY,
    build_safety_settings,
    downscale_image,
    extract_images_from_response,
    extract_text_from_response,
)

LOG = "[GeminiService]"

# ═══════════════════════════════════════════════════════════════════════════
# Models
# ═══════════════════════════════════════════════════════════════════════════
PRIMARY_MODEL = "gemini-3-pro-preview"
FALLBACK_MODEL = "gemini-3-flash-preview"

TEXT_MODELS = [
    "gemini-3-pro-preview",        # deep reasoning (preview)
    "gemini-3-flash-preview",      # speed (preview)
    "gemini-2.5-pro",              # stable, high quality
    "gemini-2.5-flash",            # stable, fast
]

PRIMARY_IMAGE_MODEL = "gemini-3-pro-image-preview"
FALLBACK_IMAGE_MODEL = "gemini-2.5-flash-image"
IMAGE_GEN_MODELS = [PRIMARY_IMAGE_MODEL, FALLBACK_IMAGE_MODEL]

DESCRIPTION_PLACEHOLDER = "Description generation failed. Analysis data available above."

MJ_MIN_SEGMENTS = 6
MJ_MAX_SEGMENTS = 8

_STATUS_RE = re.compile(r"\b([45]\d{2})\b")


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════
class GenerationError(Exception):
    """Base class for failures surfaced by the service."""


class GenerationCancelled(GenerationError):
    def __init__(self, message: str = "Generation cancelled by user"):
        super().__init__(message)


class ContentBlockedError(GenerationError):
    pass


class GenerationStoppedError(GenerationError):
    pass


class MalformedJSONError(GenerationError):
    pass


class RetriesExhaustedError(GenerationError):
    def __init__(self, message: str, attempts: int = 0, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ServiceOverloadedError(RetriesExhaustedError):
    pass


class RateLimitedError(RetriesExhaustedError):
    pass


class EmptyResponseError(RetriesExhaustedError):
    pass


class _EmptyResponse(Exception):
    """Response carried no usable payload; retried."""


# ═══════════════════════════════════════════════════════════════════════════
# Error classification
# ═══════════════════════════════════════════════════════════════════════════
def extract_status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "code", None)
    if isinstance(code, int) and 400 <= code <= 599:
        return code
    match = _STATUS_RE.search(str(exc))
    return int(match.group(1)) if match else None


def _root_error(exc: BaseException) -> BaseException:
    if isinstance(exc, RetriesExhaustedError) and exc.last_error is not None:
        return exc.last_error
    return exc


def is_timeout_error(exc: BaseException) -> bool:
    exc = _root_error(exc)
    if isinstance(exc, TimeoutError) or "timeout" in type(exc).__name__.lower():
        return True
    msg = str(exc).lower()
    return "timeout" in msg or "timed out" in msg


def is_overload_error(exc: BaseException) -> bool:
    if isinstance(exc, ServiceOverloadedError):
        return True
    root = _root_error(exc)
    if extract_status_code(root) == 503:
        return True
    msg = str(root).lower()
    return "overloaded" in msg or "service unavailable" in msg


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, GenerationError):
        return False
    if isinstance(exc, _EmptyResponse) or is_timeout_error(exc):
        return True
    if isinstance(exc, ConnectionError) or "connect" in type(exc).__name__.lower():
        return True
    if extract_status_code(exc) in RETRYABLE_STATUS_CODES:
        return True
    msg = str(exc).lower()
    return any(kw in msg for kw in RETRYABLE_KEYWORDS)


# ═══════════════════════════════════════════════════════════════════════════
# Retry state machine
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = MAX_RETRIES
    base_delay: float = RETRY_BASE_DELAY     # seconds
    max_delay: float = RETRY_MAX_DELAY       # seconds
    jitter: float = RETRY_JITTER             # fraction of the exponential delay

    def delay_for(self, retry_index: int, rand: Callable[[], float] = random.random) -> float:
        """Backoff before retry *retry_index* (0-based)."""
        exponential = self.base_delay * (2 ** retry_index)
        return min(exponential + rand() * self.jitter * exponential, self.max_delay)


class CallState(Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    FAILED_TRANSIENT = "failed_transient"
    FAILED_FATAL = "failed_fatal"
    CANCELLED = "cancelled"


TERMINAL_STATES = (
    CallState.SUCCEEDED,
    CallState.FAILED_TRANSIENT,
    CallState.FAILED_FATAL,
    CallState.CANCELLED,
)


@dataclass
class CallResult:
    state: CallState
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.state is CallState.SUCCEEDED


def _is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if _is_cancelled(cancel_event):
        raise GenerationCancelled()


def run_with_retry(
    call: Callable[[], Any],
    extract: Callable[[Any], Any],
    config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    label: str = "request",
) -> CallResult:
    """
    Drive *call* through the retry state machine.

    *extract* turns a raw response into the result value; it raises
    `_EmptyResponse` for retryable empty payloads and a `GenerationError`
    for fatal ones. Never raises itself.
    """
    config = config or RetryConfig()
    waiter = cancel_event or threading.Event()
    state = CallState.ATTEMPTING
    attempts = 0
    value: Any = None
    error: Optional[BaseException] = None

    while state not in TERMINAL_STATES:
        if _is_cancelled(cancel_event):
            state, error = CallState.CANCELLED, GenerationCancelled()
            break

        if state is CallState.BACKOFF:
            delay = config.delay_for(attempts - 1)
            print(f"{LOG} {label}: retry {attempts}/{config.max_retries} in {delay:.1f}s "
                  f"(status={extract_status_code(error) if error else None}) … {error}")
            if waiter.wait(delay) and _is_cancelled(cancel_event):
                state, error = CallState.CANCELLED, GenerationCancelled()
                break
            state = CallState.ATTEMPTING
            continue

        attempts += 1
        try:
            response = call()
            if _is_cancelled(cancel_event):
                state, error = CallState.CANCELLED, GenerationCancelled()
                break
            value = extract(response)
            state = CallState.SUCCEEDED
            if attempts > 1:
                print(f"{LOG} {label}: succeeded after {attempts - 1} retries")
        except Exception as exc:
            error = exc
            if _is_cancelled(cancel_event):
                state, error = CallState.CANCELLED, GenerationCancelled()
            elif not is_retryable(exc):
                state = CallState.FAILED_FATAL
            elif attempts > config.max_retries:
                state = CallState.FAILED_TRANSIENT
            else:
                print(f"{LOG} {label}: attempt {attempts} failed (will retry): {exc}")
                state = CallState.BACKOFF

    return CallResult(state=state, value=value, error=error, attempts=attempts)


def _exhausted_error(result: CallResult) -> RetriesExhaustedError:
    last = result.error
    status = extract_status_code(last) if last is not None else None
    if status == 503:
        return ServiceOverloadedError(
            "The AI service is temporarily unavailable (503). "
            "This usually resolves within a few minutes. Please try again shortly.",
            result.attempts, last,
        )
    if status == 429:
        return RateLimitedError(
            "Rate limit exceeded. Please wait a moment before trying again.",
            result.attempts, last,
        )
    if isinstance(last, _EmptyResponse):
        return EmptyResponseError(
            f"The AI service returned an empty response after {result.attempts} attempts. "
            "Please try again or use different images.",
            result.attempts, last,
        )
    return RetriesExhaustedError(
        f"Request failed after {result.attempts} attempts: {last}",
        result.attempts, last,
    )


def unwrap_result(result: CallResult, label: str = "request") -> Any:
    """Return the value of a finished call or raise its categorized error."""
    if result.state is CallState.SUCCEEDED:
        return result.value
    if result.state is CallState.CANCELLED:
        print(f"{LOG} {label}: cancelled")
        raise GenerationCancelled()
    if result.state is CallState.FAILED_TRANSIENT:
        err = _exhausted_error(result)
        print(f"{LOG} {label}: all {result.attempts} attempts exhausted: {result.error}")
        raise err from result.error
    print(f"{LOG} {label}: failed: {result.error}")
    raise result.error


# ---------------------------------------------------------------------------
# Response extraction
# ---------------------------------------------------------------------------
def _enum_name(value: Any) -> str:
    return getattr(value, "name", None) or str(value)


def _raise_for_empty(response, what: str):
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback else None
    if block_reason:
        raise ContentBlockedError(f"Response blocked: {_enum_name(block_reason)}")

    candidates = getattr(response, "candidates", None) or []
    if candidates:
        finish_reason = getattr(candidates[0], "finish_reason", None)
        if finish_reason and _enum_name(finish_reason) != "STOP":
            raise GenerationStoppedError(f"Generation stopped: {_enum_name(finish_reason)}")

    raise _EmptyResponse(f"Empty response received ({what})")


def extract_text(response) -> str:
    text = extract_text_from_response(response)
    if text.strip():
        return text
    _raise_for_empty(response, "no text")


def extract_images(response) -> List[Image.Image]:
    images = extract_images_from_response(response)
    if images:
        return images
    _raise_for_empty(response, "no image")


# ═══════════════════════════════════════════════════════════════════════════
# Text generation
# ═══════════════════════════════════════════════════════════════════════════
def generate_text(
    client,
    model: str,
    contents: Sequence[Any],
    system_instruction: Optional[str] = None,
    json_mode: bool = False,
    safety: str = "block_none",
    retry_config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    label: str = "",
) -> str:
    """Single-model text generation through the retry machine."""
    check_cancelled(cancel_event)
    config_kwargs = {"safety_settings": build_safety_settings(safety)}
    if system_instruction:
        config_kwargs["system_instruction"] = system_instruction
    if json_mode:
        config_kwargs["response_mime_type"] = "application/json"
    config = types.GenerateContentConfig(**config_kwargs)

    label = label or model
    print(f"{LOG} Starting generation with {model} (json={json_mode})")
    result = run_with_retry(
        lambda: client.models.generate_content(model=model, contents=list(contents), config=config),
        extract_text,
        config=retry_config,
        cancel_event=cancel_event,
        label=label,
    )
    return unwrap_result(result, label)


def generate_with_fallback(
    client,
    contents: Sequence[Any],
    system_instruction: Optional[str] = None,
    json_mode: bool = False,
    primary_model: str = PRIMARY_MODEL,
    fallback_model: Optional[str] = FALLBACK_MODEL,
    safety: str = "block_none",
    retry_config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> str:
    """Try *primary_model*; on timeout or overload switch to *fallback_model*."""
    try:
        return generate_text(
            client, primary_model, contents, system_instruction, json_mode,
            safety, retry_config, cancel_event,
        )
    except GenerationCancelled:
        raise
    except Exception as exc:
        if not fallback_model or fallback_model == primary_model:
            raise
        if not (is_timeout_error(exc) or is_overload_error(exc)):
            raise
        print(f"{LOG} {primary_model} failed ({exc}); falling back to {fallback_model}")
        return generate_text(
            client, fallback_model, contents, system_instruction, json_mode,
            safety, retry_config, cancel_event,
        )


# ═══════════════════════════════════════════════════════════════════════════
# JSON self-correction
# ═══════════════════════════════════════════════════════════════════════════
def correct_malformed_json(
    client,
    malformed_json: str,
    issues: Sequence[str],
    model: str = FALLBACK_MODEL,
    retry_config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> str:
    config = replace(retry_config or RetryConfig(), max_retries=1)
    return generate_text(
        client, model, [build_json_correction_prompt(malformed_json, issues)],
        json_mode=True, retry_config=config, cancel_event=cancel_event,
        label="json-correction",
    )


def parse_and_validate_json(
    text: str,
    client=None,
    max_corrections: int = 2,
    model: str = FALLBACK_MODEL,
    retry_config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ImageMetadata:
    """
    Parse the model's analysis JSON, asking the model to repair it up to
    *max_corrections* times. An array response uses its first analysis.
    """
    current = text
    for attempt in range(max_corrections + 1):
        check_cancelled(cancel_event)
        try:
            parsed = json.loads(strip_code_fences(current))
            if isinstance(parsed, list):
                if not parsed:
                    raise ValueError("Empty analysis array returned")
                print(f"{LOG} Multi-image response ({len(parsed)} analyses), using the first")
                parsed = parsed[0]
        except (TypeError, ValueError) as exc:
            if attempt >= max_corrections or client is None:
                print(f"{LOG} JSON parse error after {attempt} corrections: {str(current)[:200]}")
                raise MalformedJSONError(
                    "Failed to parse stylistic analysis: The AI returned invalid JSON. "
                    "Please try again."
                ) from exc
            print(f"{LOG} JSON syntax error on attempt {attempt + 1}, requesting correction")
            current = correct_malformed_json(
                client, current, [f"Invalid JSON syntax: {exc}"], model, retry_config, cancel_event,
            )
            continue

        print(f"{LOG} JSON parsed after {attempt + 1} attempt(s), normalizing")
        return normalize_metadata(parsed)

    raise MalformedJSONError("Failed to get valid response after multiple correction attempts.")


# ═══════════════════════════════════════════════════════════════════════════
# Image analysis
# ═══════════════════════════════════════════════════════════════════════════
def _coerce_label(label: Union[ImageLabel, str, None]) -> ImageLabel:
    if isinstance(label, ImageLabel):
        return label
    if isinstance(label, str) and label.strip():
        return ImageLabel(type=label.strip().lower())
    return ImageLabel()


def build_image_context(labels: Sequence[Union[ImageLabel, str, None]]) -> str:
    """``[Image N - <Label>]`` lines followed by a blank line."""
    if not labels:
        return ""
    lines = [f"[Image {i + 1} - {_coerce_label(lbl).text}]" for i, lbl in enumerate(labels)]
    return "\n".join(lines) + "\n\n"


def build_analysis_prompts(labels: Sequence[Any], guidance: str = "") -> tuple:
    """Return (json_prompt, description_prompt)."""
    ctx = build_image_context(labels)
    guidance = (guidance or "").strip()
    directive = (
        f"\n\n[USER DIRECTIVE]: {guidance}\nINSTRUCTION: The User Directive above is ABSOLUTE. "
        "It overrides any default aesthetic assumptions."
        if guidance else ""
    )
    json_prompt = f"{ctx}Analyze these images according to the schema.{directive}"
    if guidance:
        desc_prompt = f"{ctx}Generate a visual description merging these images. Focus specifically on: {guidance}"
    else:
        desc_prompt = f"{ctx}Generate the visual description."
    return json_prompt, desc_prompt


def analyze_images(
    client,
    images: Sequence[Image.Image],
    labels: Optional[Sequence[Any]] = None,
    guidance: str = "",
    model: str = PRIMARY_MODEL,
    fallback_model: Optional[str] = FALLBACK_MODEL,
    compile_mj: bool = True,
    safety: str = "block_none",
    retry_config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> AnalysisResult:
    """
    Extract structured metadata and a prose description from *images*.

    Both calls run concurrently and are allowed to fail independently:
    the JSON extraction is required, the description degrades to a
    placeholder. MJ compilation follows and never fails the analysis.
    """
    if not images:
        raise ValueError("At least one image is required for analysis.")
    check_cancelled(cancel_event)

    uploads = [downscale_image(img) for img in images]
    json_prompt, desc_prompt = build_analysis_prompts(labels or [], guidance)
    print(f"{LOG} Analyzing {len(uploads)} image(s) | Model: {model} | Guidance: {bool(guidance)}")

    def run(system_instruction: str, prompt: str, json_mode: bool) -> str:
        return generate_with_fallback(
            client, [*uploads, prompt], system_instruction, json_mode,
            model, fallback_model, safety, retry_config, cancel_event,
        )

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="dna-analyze") as pool:
        json_future = pool.submit(run, JSON_SYSTEM_PROMPT, json_prompt, True)
        desc_future = pool.submit(run, DESC_SYSTEM_PROMPT, desc_prompt, False)
        wait([json_future, desc_future])

    check_cancelled(cancel_event)

    json_error = json_future.exception()
    desc_error = desc_future.exception()
    if json_error is not None:
        if desc_error is not None:
            print(f"{LOG} Both JSON and description failed: {json_error} | {desc_error}")
        raise json_error
    if desc_error is not None:
        print(f"{LOG} Description failed, continuing with JSON only: {desc_error}")

    metadata = parse_and_validate_json(
        json_future.result(), client, model=fallback_model or model,
        retry_config=retry_config, cancel_event=cancel_event,
    )
    description = desc_future.result() if desc_error is None else DESCRIPTION_PLACEHOLDER

    mj_prompt = None
    if compile_mj:
        mj_prompt = compile_mj_prompt(
            client, metadata, model=fallback_model or model,
            retry_config=retry_config, cancel_event=cancel_event,
        )

    print(f"{LOG} ✅ Analysis complete | description={desc_error is None} | mj={mj_prompt is not None}")
    return AnalysisResult(metadata=metadata, description=description, mj_prompt=mj_prompt)


# ═══════════════════════════════════════════════════════════════════════════
# MJ prompt compilation (best effort)
# ═══════════════════════════════════════════════════════════════════════════
def compile_mj_prompt(
    client,
    metadata: ImageMetadata,
    model: str = FALLBACK_MODEL,
    retry_config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Optional[MJCompilerResult]:
    """Ask the model for a Midjourney prompt. Any failure returns None."""
    try:
        check_cancelled(cancel_event)
        payload = json.dumps(metadata.to_dict(), indent=2)
        text = generate_text(
            client, model, [f"Compile this metadata into an MJ prompt:\n\n{payload}"],
            system_instruction=MJ_COMPILER_SYSTEM_PROMPT, json_mode=True,
            retry_config=retry_config, cancel_event=cancel_event, label="mj-compiler",
        )
        check_cancelled(cancel_event)
        data = json.loads(strip_code_fences(text))
    except Exception as exc:
        print(f"{LOG} MJ compiler failed, continuing without MJ prompt: {exc}")
        return None

    if not isinstance(data, dict):
        print(f"{LOG} MJ compiler returned non-object JSON")
        return None
    positive = data.get("positive")
    if not isinstance(positive, str) or not positive.strip():
        print(f"{LOG} MJ compiler output missing positive prompt")
        return None

    segments = [s.strip() for s in positive.split(",") if s.strip()]
    if not MJ_MIN_SEGMENTS <= len(segments) <= MJ_MAX_SEGMENTS:
        print(f"{LOG} MJ compiler output has {len(segments)} segments "
              f"(expected {MJ_MIN_SEGMENTS}-{MJ_MAX_SEGMENTS})")
    if len(segments) >= 2 and "in the style of" not in segments[1].lower():
        print(f"{LOG} MJ compiler output missing 'in the style of' in second position")

    negative = data.get("negative")
    return MJCompilerResult(positive=positive, negative=negative if isinstance(negative, str) else "")


# ═══════════════════════════════════════════════════════════════════════════
# Image generation
# ═══════════════════════════════════════════════════════════════════════════
def build_metadata_image_prompt(metadata: ImageMetadata) -> str:
    return f"{IMAGE_GEN_PROMPT_PREFIX}\n\n{json.dumps(metadata.to_dict(), indent=2)}"


def _image_config(model: str, aspect_ratio: str, image_size: str, safety: str, seed: int):
    image_config_kwargs = {"aspect_ratio": aspect_ratio}
    if "3-pro" in model:
        image_config_kwargs["image_size"] = image_size
    config = types.GenerateContentConfig(
        response_modalities=["IMAGE"],
        safety_settings=build_safety_settings(safety),
        image_config=types.ImageConfig(**image_config_kwargs),
    )
    if seed > 0:
        config.seed = seed
    return config


def generate_image(
    client,
    prompt: str,
    model: str = PRIMARY_IMAGE_MODEL,
    fallback_model: Optional[str] = FALLBACK_IMAGE_MODEL,
    reference_images: Optional[Sequence[Image.Image]] = None,
    aspect_ratio: str = "1:1",
    image_size: str = "1K",
    safety: str = "block_none",
    seed: int = 0,
    retry_config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[Image.Image]:
    """Generate image(s) from *prompt*, optionally guided by reference images."""
    check_cancelled(cancel_event)
    contents: List[Any] = [prompt]
    contents.extend(downscale_image(img) for img in (reference_images or []))

    def attempt(model_name: str) -> List[Image.Image]:
        config = _image_config(model_name, aspect_ratio, image_size, safety, seed)
        print(f"{LOG} Image generation | Model: {model_name} | AR: {aspect_ratio} "
              f"| References: {len(contents) - 1}")
        result = run_with_retry(
            lambda: client.models.generate_content(model=model_name, contents=contents, config=config),
            extract_images,
            config=retry_config,
            cancel_event=cancel_event,
            label=f"image:{model_name}",
        )
        return unwrap_result(result, f"image:{model_name}")

    try:
        return attempt(model)
    except GenerationCancelled:
        raise
    except Exception as exc:
        if not fallback_model or fallback_model == model:
            raise
        if not (is_timeout_error(exc) or is_overload_error(exc)):
            raise
        print(f"{LOG} {model} failed ({exc}); falling back to {fallback_model}")
        return attempt(fallback_model)
