"""Tests for backend adapters (one attempt each, errors mapped onto the taxonomy)."""

import json
from types import SimpleNamespace

import httpx
import pytest
from botocore.stub import Stubber

from smartshot.ocr.base import BackendConfig, BackendKind, Rect
from smartshot.ocr.errors import (
    AuthError,
    NetworkError,
    OcrTimeoutError,
    ParseError,
    ProviderError,
    RateLimitError,
)
from smartshot.ocr.provider_chat import ChatCompletionProvider
from smartshot.ocr.provider_claude import ClaudeProvider
from smartshot.ocr.provider_gemini import GeminiProvider
from smartshot.ocr.provider_google_vision import GoogleVisionProvider
from smartshot.ocr.provider_tesseract import TesseractProvider
from smartshot.ocr.provider_textract import TextractProvider
from tests.helpers import make_image


def _config(kind: BackendKind, **overrides) -> BackendConfig:
    defaults = dict(
        kind=kind,
        credential="test-key",
        endpoint="https://provider.test/v1/chat/completions",
        model="test-model",
        timeout_seconds=5,
    )
    defaults.update(overrides)
    return BackendConfig(**defaults)


# ----------------------------------------------------------------------
# Chat completions (OpenAI, Grok, DeepSeek)


@pytest.mark.asyncio
async def test_chat_provider_builds_request_and_normalizes_text() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Hello World\n"}}]})

    provider = ChatCompletionProvider(default_confidence=0.95, transport=httpx.MockTransport(handler))
    result = await provider.recognize(make_image(), _config(BackendKind.GROK), ["en"])

    assert captured["auth"] == "Bearer test-key"
    content = captured["body"]["messages"][0]["content"]
    assert content[0]["type"] == "text"
    assert "most likely in: en" in content[0]["text"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
    assert captured["body"]["model"] == "test-model"

    assert result.text == "Hello World"
    assert result.confidence == 0.95
    assert result.backend is BackendKind.GROK
    assert result.regions[0].bbox is None


@pytest.mark.asyncio
async def test_chat_provider_requires_credential_before_io() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = ChatCompletionProvider(transport=httpx.MockTransport(handler))
    with pytest.raises(AuthError):
        await provider.recognize(make_image(), _config(BackendKind.OPENAI, credential=None))


@pytest.mark.asyncio
async def test_chat_provider_maps_rate_limit() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(429, headers={"Retry-After": "3"}))
    provider = ChatCompletionProvider(transport=transport)

    with pytest.raises(RateLimitError) as exc_info:
        await provider.recognize(make_image(), _config(BackendKind.OPENAI))
    assert exc_info.value.retry_after == 3.0


def test_chat_parse_content_variants() -> None:
    parse = ChatCompletionProvider.parse_content
    assert parse({"choices": [{"message": {"content": None}}]}, "openai") == ""
    assert parse(
        {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}}]},
        "openai",
    ) == "ab"
    with pytest.raises(ParseError):
        parse({"choices": []}, "openai")


@pytest.mark.asyncio
async def test_chat_provider_empty_answer_has_no_regions() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": ""}}]}))
    result = await ChatCompletionProvider(transport=transport).recognize(
        make_image(), _config(BackendKind.DEEPSEEK))

    assert result.regions == []
    assert result.text == ""
    assert result.confidence == 0.0


# ----------------------------------------------------------------------
# Gemini


@pytest.mark.asyncio
async def test_gemini_provider_request_and_parse() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = request.url
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": "Line 1\n"}, {"text": "Line 2"}]}}],
        })

    provider = GeminiProvider(transport=httpx.MockTransport(handler))
    config = _config(BackendKind.GEMINI, endpoint="https://gemini.test/v1beta/models", model="gemini-x")
    result = await provider.recognize(make_image(), config)

    assert captured["url"].path == "/v1beta/models/gemini-x:generateContent"
    assert captured["url"].params["key"] == "test-key"
    assert captured["body"]["contents"][0]["parts"][1]["inline_data"]["mime_type"] == "image/png"
    assert result.text == "Line 1\nLine 2"


def test_gemini_parse_without_candidates() -> None:
    with pytest.raises(ParseError):
        GeminiProvider.parse_content({"promptFeedback": {}})
    assert GeminiProvider.parse_content({"candidates": [{"finishReason": "SAFETY"}]}) == ""


# ----------------------------------------------------------------------
# Google Cloud Vision


def _vertices(x: int, y: int, w: int, h: int):
    return {"vertices": [{"x": x, "y": y}, {"x": x + w, "y": y}, {"x": x + w, "y": y + h}, {"x": x, "y": y + h}]}


VISION_BODY = {
    "responses": [{
        "textAnnotations": [
            {"description": "Hello World\nBye", "locale": "en", "boundingPoly": _vertices(0, 0, 100, 40)},
            {"description": "Hello", "boundingPoly": _vertices(0, 0, 40, 10)},
            {"description": "World", "boundingPoly": _vertices(50, 0, 40, 10)},
            {"description": "Bye", "boundingPoly": _vertices(0, 30, 30, 10)},
        ]
    }]
}


@pytest.mark.asyncio
async def test_google_vision_merges_words_into_lines() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=VISION_BODY)

    provider = GoogleVisionProvider(default_confidence=0.95, transport=httpx.MockTransport(handler))
    config = _config(BackendKind.GOOGLE_VISION, endpoint="https://vision.test/v1/images:annotate")
    result = await provider.recognize(make_image(), config, ["en"])

    request = captured["body"]["requests"][0]
    assert request["features"] == [{"type": "TEXT_DETECTION"}]
    assert request["imageContext"] == {"languageHints": ["en"]}
    assert result.text == "Hello World\nBye"
    assert [r.language for r in result.regions] == ["en", "en"]
    assert result.regions[0].bbox == Rect(0, 0, 90, 10)


@pytest.mark.asyncio
async def test_google_vision_roi_drops_outside_lines() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=VISION_BODY))
    provider = GoogleVisionProvider(transport=transport)
    config = _config(BackendKind.GOOGLE_VISION, endpoint="https://vision.test/v1/images:annotate")

    result = await provider.recognize(make_image(), config, region_of_interest=Rect(0, 25, 100, 20))
    assert result.text == "Bye"


def test_google_vision_per_image_errors() -> None:
    provider = GoogleVisionProvider()
    with pytest.raises(AuthError):
        provider.parse_annotations({"responses": [{"error": {"code": 7, "message": "denied"}}]}, None)
    with pytest.raises(RateLimitError):
        provider.parse_annotations({"responses": [{"error": {"code": 8}}]}, None)
    with pytest.raises(ProviderError):
        provider.parse_annotations({"responses": [{"error": {"code": 3}}]}, None)
    with pytest.raises(ParseError):
        provider.parse_annotations({}, None)
    assert provider.parse_annotations({"responses": [{}]}, None) == []


# ----------------------------------------------------------------------
# Claude (Anthropic SDK over a mocked transport)


def _claude_provider(handler) -> ClaudeProvider:
    return ClaudeProvider(
        default_confidence=0.95,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _claude_config() -> BackendConfig:
    return _config(BackendKind.CLAUDE, endpoint="https://anthropic.test", model="claude-test")


@pytest.mark.asyncio
async def test_claude_provider_parses_text_blocks() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "msg_1",
            "type": "message",
            "role": "assistant",
            "model": "claude-test",
            "content": [{"type": "text", "text": "Hello World"}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
            "usage": {"input_tokens": 10, "output_tokens": 3},
        })

    provider = _claude_provider(handler)
    result = await provider.recognize(make_image(), _claude_config())

    image_block = captured["body"]["messages"][0]["content"][1]
    assert image_block["source"]["type"] == "base64"
    assert image_block["source"]["media_type"] == "image/png"
    assert result.text == "Hello World"
    assert result.confidence == 0.95
    assert result.backend is BackendKind.CLAUDE
    await provider.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [(401, AuthError), (429, RateLimitError), (500, NetworkError), (400, ProviderError)],
)
async def test_claude_provider_maps_status_errors(status, error) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"type": "error", "error": {"type": "x", "message": "nope"}})

    provider = _claude_provider(handler)
    with pytest.raises(error):
        await provider.recognize(make_image(), _claude_config())
    await provider.aclose()


@pytest.mark.asyncio
async def test_claude_provider_maps_connection_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = _claude_provider(handler)
    with pytest.raises(NetworkError):
        await provider.recognize(make_image(), _claude_config())
    await provider.aclose()


# ----------------------------------------------------------------------
# Textract (botocore Stubber)


@pytest.mark.asyncio
async def test_textract_scales_line_geometry(monkeypatch) -> None:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    provider = TextractProvider()
    config = _config(BackendKind.TEXTRACT, credential=None, region="us-east-1")
    image = make_image()
    client = provider.client_for(config)

    with Stubber(client) as stubber:
        stubber.add_response(
            "detect_document_text",
            {
                "Blocks": [
                    {"BlockType": "PAGE"},
                    {
                        "BlockType": "LINE",
                        "Text": "Total 12.00",
                        "Confidence": 98.0,
                        "Geometry": {"BoundingBox": {"Left": 0.5, "Top": 0.5, "Width": 0.25, "Height": 0.1}},
                    },
                    {
                        "BlockType": "LINE",
                        "Text": "Receipt",
                        "Confidence": 90.0,
                        "Geometry": {"BoundingBox": {"Left": 0.0, "Top": 0.0, "Width": 0.5, "Height": 0.1}},
                    },
                ]
            },
            {"Document": {"Bytes": image.data}},
        )
        result = await provider.recognize(image, config)

    assert result.text == "Receipt\nTotal 12.00"
    assert result.regions[1].bbox == Rect(x=20, y=10, width=10, height=2)
    assert result.confidence == pytest.approx(0.94)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code, error",
    [
        ("ThrottlingException", RateLimitError),
        ("AccessDeniedException", AuthError),
        ("InternalServerError", NetworkError),
        ("InvalidParameterException", ProviderError),
    ],
)
async def test_textract_maps_client_errors(monkeypatch, code, error) -> None:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    provider = TextractProvider()
    config = _config(BackendKind.TEXTRACT, credential=None, region="us-east-1")
    client = provider.client_for(config)

    with Stubber(client) as stubber:
        stubber.add_client_error("detect_document_text", service_error_code=code)
        with pytest.raises(error):
            await provider.recognize(make_image(), config)


def test_textract_parse_blocks_requires_blocks() -> None:
    with pytest.raises(ParseError):
        TextractProvider.parse_blocks({}, 10, 10)


# ----------------------------------------------------------------------
# Tesseract (pytesseract replaced by a fake)


class _FakeOutput:
    DICT = "dict"


class _FakeTesseract:
    Output = _FakeOutput

    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.calls = []
        self.pytesseract = SimpleNamespace(tesseract_cmd="tesseract")

    def image_to_data(self, image, lang, config, timeout, output_type):
        self.calls.append({"lang": lang, "config": config, "timeout": timeout, "output_type": output_type})
        if self.error is not None:
            raise self.error
        return self.data


TESSERACT_DATA = {
    "text": ["", "Hello", "World", "Second", "  "],
    "conf": ["-1", "96", "90", "70", "-1"],
    "block_num": [1, 1, 1, 1, 1],
    "par_num": [1, 1, 1, 1, 1],
    "line_num": [0, 1, 1, 2, 2],
    "left": [0, 0, 60, 0, 0],
    "top": [0, 0, 0, 30, 30],
    "width": [100, 50, 40, 60, 0],
    "height": [40, 10, 10, 10, 0],
}


@pytest.mark.asyncio
async def test_tesseract_groups_words_into_lines() -> None:
    fake = _FakeTesseract(data=TESSERACT_DATA)
    provider = TesseractProvider()
    provider.pytesseract = fake

    result = await provider.recognize(make_image(), BackendConfig(kind=BackendKind.ON_DEVICE, timeout_seconds=9),
                                      ["en", "ja"])

    assert fake.calls[0]["lang"] == "eng+jpn"
    assert fake.calls[0]["timeout"] == 9
    assert fake.calls[0]["output_type"] == "dict"
    assert result.text == "Hello World\nSecond"
    assert result.regions[0].confidence == pytest.approx(0.93)
    assert result.regions[0].bbox == Rect(0, 0, 100, 10)
    assert result.backend is BackendKind.ON_DEVICE
    assert result.confidence == pytest.approx((0.93 + 0.70) / 2)


@pytest.mark.asyncio
async def test_tesseract_undecodable_image_is_parse_error() -> None:
    provider = TesseractProvider()
    provider.pytesseract = _FakeTesseract(data=TESSERACT_DATA)

    with pytest.raises(ParseError):
        await provider.recognize(make_image(data=b"not an image"), BackendConfig(kind=BackendKind.ON_DEVICE))


@pytest.mark.asyncio
async def test_tesseract_timeout_maps_to_timeout_error() -> None:
    provider = TesseractProvider()
    provider.pytesseract = _FakeTesseract(error=RuntimeError("Tesseract process timeout"))

    with pytest.raises(OcrTimeoutError):
        await provider.recognize(make_image(), BackendConfig(kind=BackendKind.ON_DEVICE))


@pytest.mark.asyncio
async def test_tesseract_uses_engine_path_from_config() -> None:
    fake = _FakeTesseract(data=TESSERACT_DATA)
    provider = TesseractProvider()
    provider.pytesseract = fake

    await provider.recognize(make_image(), BackendConfig(kind=BackendKind.ON_DEVICE, engine_path="/opt/tess/bin"))

    assert fake.pytesseract.tesseract_cmd == "/opt/tess/bin"
