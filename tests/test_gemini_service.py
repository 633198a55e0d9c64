import json
import threading
import time
from io import BytesIO
from types import SimpleNamespace

import pytest
from PIL import Image

from dna_prompt_suite.gemini_service import (
    DESCRIPTION_PLACEHOLDER,
    FALLBACK_MODEL,
    PRIMARY_MODEL,
    CallState,
    ContentBlockedError,
    EmptyResponseError,
    GenerationCancelled,
    GenerationStoppedError,
    MalformedJSONError,
    RateLimitedError,
    RetriesExhaustedError,
    RetryConfig,
    ServiceOverloadedError,
    analyze_images,
    build_analysis_prompts,
    build_image_context,
    compile_mj_prompt,
    extract_status_code,
    extract_text,
    generate_image,
    generate_text,
    generate_with_fallback,
    is_retryable,
    parse_and_validate_json,
    run_with_retry,
)
from dna_prompt_suite.metadata_schema import ImageLabel, ImageMetadata

FAST = RetryConfig(max_retries=2, base_delay=0, jitter=0)


class APIError(Exception):
    def __init__(self, code, message="error"):
        super().__init__(f"{code} {message}")
        self.code = code


class ReadTimeout(Exception):
    pass


def text_response(text):
    part = SimpleNamespace(text=text, thought=None, inline_data=None)
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]), finish_reason="STOP")
    return SimpleNamespace(candidates=[candidate], prompt_feedback=None)


def image_response(color="red"):
    buf = BytesIO()
    Image.new("RGB", (4, 4), color).save(buf, format="PNG")
    part = SimpleNamespace(text=None, thought=None, inline_data=SimpleNamespace(data=buf.getvalue()))
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]), finish_reason="STOP")
    return SimpleNamespace(candidates=[candidate], prompt_feedback=None)


def blocked_response():
    return SimpleNamespace(candidates=[], prompt_feedback=SimpleNamespace(block_reason="SAFETY"))


def stopped_response():
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[]), finish_reason="MAX_TOKENS")
    return SimpleNamespace(candidates=[candidate], prompt_feedback=None)


def empty_response():
    return SimpleNamespace(candidates=[], prompt_feedback=None)


class FakeClient:
    """`client.models.generate_content` driven by a script or a router."""

    def __init__(self, script=None, router=None):
        self.script = list(script or [])
        self.router = router
        self.calls = []
        self._lock = threading.Lock()
        self.models = SimpleNamespace(generate_content=self.generate_content)

    def generate_content(self, model, contents, config):
        with self._lock:
            self.calls.append(SimpleNamespace(model=model, contents=contents, config=config))
            outcome = self.router(model, contents) if self.router else self.script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------
def test_status_code_extraction():
    assert extract_status_code(APIError(503)) == 503
    assert extract_status_code(RuntimeError("HTTP 429 Too Many Requests")) == 429
    assert extract_status_code(RuntimeError("no code here")) is None


@pytest.mark.parametrize("exc,expected", [
    (APIError(503), True),
    (APIError(429), True),
    (APIError(500), True),
    (APIError(400, "bad request"), False),
    (ReadTimeout("read timed out"), True),
    (ConnectionError("reset"), True),
    (RuntimeError("model is overloaded"), True),
    (ValueError("boom"), False),
    (ContentBlockedError("SAFETY"), False),
])
def test_is_retryable(exc, expected):
    assert is_retryable(exc) is expected


def test_delay_for():
    config = RetryConfig(base_delay=3.0, max_delay=30.0, jitter=0.25)
    assert config.delay_for(0, lambda: 0.0) == 3.0
    assert config.delay_for(1, lambda: 0.0) == 6.0
    assert config.delay_for(2, lambda: 1.0) == 15.0
    assert config.delay_for(4, lambda: 0.0) == 30.0


# ---------------------------------------------------------------------------
# Retry state machine
# ---------------------------------------------------------------------------
def test_retry_then_success():
    client = FakeClient([APIError(503), APIError(503), text_response("ok")])
    result = run_with_retry(lambda: client.models.generate_content("m", [], None), extract_text, FAST)
    assert result.state is CallState.SUCCEEDED
    assert result.ok
    assert result.value == "ok"
    assert result.attempts == 3


def test_fatal_error_not_retried():
    client = FakeClient([APIError(400, "invalid argument"), text_response("never")])
    result = run_with_retry(lambda: client.models.generate_content("m", [], None), extract_text, FAST)
    assert result.state is CallState.FAILED_FATAL
    assert result.attempts == 1


def test_cancelled_before_first_attempt():
    event = threading.Event()
    event.set()
    client = FakeClient([text_response("never")])
    result = run_with_retry(lambda: client.models.generate_content("m", [], None), extract_text, FAST, event)
    assert result.state is CallState.CANCELLED
    assert result.attempts == 0
    assert client.calls == []


def test_cancel_during_call_stops_retrying():
    event = threading.Event()

    def call():
        event.set()
        raise APIError(503)

    result = run_with_retry(call, extract_text, FAST, event)
    assert result.state is CallState.CANCELLED
    assert isinstance(result.error, GenerationCancelled)
    assert result.attempts == 1


def test_cancel_wakes_backoff_wait():
    event = threading.Event()
    client = FakeClient(router=lambda model, contents: APIError(503))
    timer = threading.Timer(0.1, event.set)
    timer.start()
    started = time.monotonic()
    try:
        result = run_with_retry(
            lambda: client.models.generate_content("m", [], None),
            extract_text, RetryConfig(max_retries=3, base_delay=30, jitter=0), event,
        )
    finally:
        timer.cancel()
    assert result.state is CallState.CANCELLED
    assert result.attempts == 1
    assert time.monotonic() - started < 5


@pytest.mark.parametrize("failure,error_type", [
    (lambda: APIError(503), ServiceOverloadedError),
    (lambda: APIError(429), RateLimitedError),
    (empty_response, EmptyResponseError),
    (lambda: ReadTimeout("timed out"), RetriesExhaustedError),
])
def test_exhaustion_is_categorized(failure, error_type):
    client = FakeClient([failure() for _ in range(3)])
    with pytest.raises(error_type) as info:
        generate_text(client, "m", ["hi"], retry_config=FAST)
    assert type(info.value) is error_type
    assert info.value.attempts == 3
    assert len(client.calls) == 3


def test_empty_response_message():
    client = FakeClient([empty_response() for _ in range(3)])
    with pytest.raises(EmptyResponseError, match="empty response after 3 attempts"):
        generate_text(client, "m", ["hi"], retry_config=FAST)


@pytest.mark.parametrize("response,error_type", [
    (blocked_response, ContentBlockedError),
    (stopped_response, GenerationStoppedError),
])
def test_block_and_stop_are_fatal(response, error_type):
    client = FakeClient([response(), text_response("never")])
    with pytest.raises(error_type):
        generate_text(client, "m", ["hi"], retry_config=FAST)
    assert len(client.calls) == 1


def test_generate_text_cancelled_up_front():
    event = threading.Event()
    event.set()
    client = FakeClient([])
    with pytest.raises(GenerationCancelled):
        generate_text(client, "m", ["hi"], retry_config=FAST, cancel_event=event)


def test_generate_text_sends_json_config():
    client = FakeClient([text_response("{}")])
    generate_text(client, "m", ["hi"], system_instruction="sys", json_mode=True, retry_config=FAST)
    assert client.calls[0].config.response_mime_type == "application/json"
    assert len(client.calls[0].config.safety_settings) == 4


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------
def test_fallback_on_timeout():
    def router(model, contents):
        return ReadTimeout("timed out") if model == PRIMARY_MODEL else text_response("from fallback")

    client = FakeClient(router=router)
    assert generate_with_fallback(client, ["hi"], retry_config=FAST) == "from fallback"
    assert [c.model for c in client.calls] == [PRIMARY_MODEL] * 3 + [FALLBACK_MODEL]


def test_no_fallback_on_fatal_error():
    client = FakeClient([blocked_response()])
    with pytest.raises(ContentBlockedError):
        generate_with_fallback(client, ["hi"], retry_config=FAST)
    assert len(client.calls) == 1


# ---------------------------------------------------------------------------
# JSON self-correction
# ---------------------------------------------------------------------------
def test_parse_valid_json_without_client():
    md = parse_and_validate_json('```json\n{"meta": {"intent": "poster"}}\n```')
    assert md.meta.intent == "poster"


def test_parse_uses_first_of_array():
    md = parse_and_validate_json('[{"meta": {"intent": "a"}}, {"meta": {"intent": "b"}}]')
    assert md.meta.intent == "a"


def test_parse_corrects_once():
    client = FakeClient([text_response('{"meta": {"intent": "fixed"}}')])
    md = parse_and_validate_json("{bad json", client, retry_config=FAST)
    assert md.meta.intent == "fixed"
    assert len(client.calls) == 1
    assert "{bad json" in client.calls[0].contents[0]


def test_parse_gives_up_after_corrections():
    client = FakeClient([text_response("still bad"), text_response("[]")])
    with pytest.raises(MalformedJSONError, match="invalid JSON"):
        parse_and_validate_json("nope", client, max_corrections=2, retry_config=FAST)
    assert len(client.calls) == 2


def test_parse_without_client_fails_immediately():
    with pytest.raises(MalformedJSONError):
        parse_and_validate_json("nope")


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------
def test_build_image_context():
    labels = [ImageLabel("style"), "Composition", None, ImageLabel(custom="Hero pose")]
    assert build_image_context(labels) == (
        "[Image 1 - Style Reference]\n"
        "[Image 2 - Composition Reference]\n"
        "[Image 3 - General Reference]\n"
        "[Image 4 - Hero pose]\n\n"
    )
    assert build_image_context([]) == ""


def test_analysis_prompts_with_guidance():
    json_prompt, desc_prompt = build_analysis_prompts(["subject"], "moody lighting")
    assert json_prompt.startswith("[Image 1 - Subject Reference]\n\nAnalyze these images")
    assert "[USER DIRECTIVE]: moody lighting" in json_prompt
    assert desc_prompt.endswith("Focus specifically on: moody lighting")


ANALYSIS_JSON = json.dumps({
    "meta": {"intent": "cinematic portrait", "aspect_ratio": "16:9", "quality": "masterpiece"},
    "subject": {"archetype": "wanderer"},
    "negative": "blurry",
})
MJ_JSON = json.dumps({
    "positive": "wanderer, in the style of photorealistic, brown and gold, moody, dusty, 85mm",
    "negative": "blurry",
})


def analysis_router(description=None, analysis=None, mj=None):
    def router(model, contents):
        prompt = contents[-1]
        if prompt.startswith("Compile this metadata"):
            return mj if mj is not None else text_response(MJ_JSON)
        if "Analyze these images" in prompt:
            return analysis if analysis is not None else text_response(ANALYSIS_JSON)
        return description if description is not None else text_response("A lone wanderer.")
    return router


@pytest.fixture
def images():
    return [Image.new("RGB", (16, 16), "gray")]


def test_analyze_images_success(images):
    client = FakeClient(router=analysis_router())
    result = analyze_images(client, images, ["subject"], retry_config=FAST)
    assert result.metadata.meta.intent == "cinematic portrait"
    assert result.description == "A lone wanderer."
    assert result.mj_prompt.negative == "blurry"
    assert result.mj_prompt.positive.startswith("wanderer, in the style of")
    assert len(client.calls) == 3


def test_analyze_images_description_failure_degrades(images):
    client = FakeClient(router=analysis_router(description=ValueError("boom")))
    result = analyze_images(client, images, compile_mj=False, retry_config=FAST)
    assert result.description == DESCRIPTION_PLACEHOLDER
    assert result.metadata.subject.archetype == "wanderer"
    assert result.mj_prompt is None


def test_analyze_images_json_failure_is_fatal(images):
    client = FakeClient(router=analysis_router(analysis=blocked_response()))
    with pytest.raises(ContentBlockedError):
        analyze_images(client, images, retry_config=FAST)


def test_analyze_images_requires_images():
    with pytest.raises(ValueError):
        analyze_images(FakeClient(), [])


def test_analyze_images_mj_failure_keeps_analysis(images):
    client = FakeClient(router=analysis_router(mj=text_response("not json")))
    result = analyze_images(client, images, retry_config=FAST)
    assert result.mj_prompt is None
    assert result.metadata.negative == "blurry"


@pytest.mark.parametrize("payload", ["not json", "[1, 2]", '{"negative": "x"}', '{"positive": "  "}'])
def test_compile_mj_prompt_returns_none(payload):
    client = FakeClient([text_response(payload)])
    assert compile_mj_prompt(client, ImageMetadata(), retry_config=FAST) is None


def test_compile_mj_prompt_swallows_api_errors():
    client = FakeClient([blocked_response()])
    assert compile_mj_prompt(client, ImageMetadata(), retry_config=FAST) is None


# ---------------------------------------------------------------------------
# Image generation
# ---------------------------------------------------------------------------
def test_generate_image_decodes_inline_data():
    client = FakeClient([image_response("blue")])
    images = generate_image(client, "a blue square", retry_config=FAST, seed=7)
    assert len(images) == 1
    assert images[0].size == (4, 4)
    assert images[0].getpixel((0, 0)) == (0, 0, 255)
    assert client.calls[0].config.seed == 7
    assert client.calls[0].config.image_config.image_size == "1K"


def test_generate_image_falls_back_on_overload():
    def router(model, contents):
        return APIError(503) if model == "gemini-3-pro-image-preview" else image_response()

    client = FakeClient(router=router)
    images = generate_image(client, "prompt", reference_images=[Image.new("RGB", (8, 8))], retry_config=FAST)
    assert len(images) == 1
    assert client.calls[-1].model == "gemini-2.5-flash-image"
    assert client.calls[-1].config.image_config.image_size is None
    assert len(client.calls[-1].contents) == 2


def test_generate_image_missing_image_retries_then_fails():
    client = FakeClient([text_response("sorry, text only") for _ in range(3)])
    with pytest.raises(EmptyResponseError):
        generate_image(client, "prompt", fallback_model=None, retry_config=FAST)
    assert len(client.calls) == 3
