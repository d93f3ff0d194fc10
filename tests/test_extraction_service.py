import base64
import json

import pytest
import requests

from scriptscan.core.config import settings
from scriptscan.core.errors import ExtractionError
from scriptscan.services import extraction_service
from scriptscan.services.extraction_service import (
    GeminiExtractor,
    NO_DATA_MESSAGE,
    OpenAICompatibleExtractor,
    get_extractor,
    parse_record,
)
from tests.helpers import PNG_BYTES, FakeResponse, gemini_reply

RECORD_JSON = json.dumps({
    "isPrescription": True,
    "doctor": {"name": "Dr. Meena Raghavan"},
    "patient": {"name": "Arun Kumar"},
    "medications": [
        {"name": "Dolo 650", "genericName": "Paracetamol", "dosage": "650 மி.கி", "frequency": "தினமும் இரு முறை"},
        {"name": "Azithral 500", "genericName": "Azithromycin"},
    ],
})


@pytest.fixture
def captured_post(monkeypatch):
    calls = []

    def install(response=None, exc=None):
        def fake_post(url, json=None, headers=None, timeout=None):
            calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
            if exc is not None:
                raise exc
            return response
        monkeypatch.setattr(extraction_service.requests, "post", fake_post)
        return calls

    return install


def test_gemini_request_shape(captured_post):
    calls = captured_post(FakeResponse(json_data=gemini_reply(RECORD_JSON)))
    GeminiExtractor(api_key="abc", timeout=5).extract(PNG_BYTES, "image/png")

    assert len(calls) == 1
    call = calls[0]
    assert "gemini-2.5-flash:generateContent" in call["url"]
    assert "key=abc" in call["url"]
    assert call["timeout"] == 5

    parts = call["json"]["contents"][0]["parts"]
    assert parts[0]["inlineData"]["mimeType"] == "image/png"
    assert base64.b64decode(parts[0]["inlineData"]["data"]) == PNG_BYTES
    assert "medical prescription" in parts[1]["text"]

    config = call["json"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert "isPrescription" in config["responseSchema"]["properties"]


def test_gemini_keeps_existing_query_params(captured_post):
    calls = captured_post(FakeResponse(json_data=gemini_reply(RECORD_JSON)))
    GeminiExtractor(api_key="abc", api_url="https://proxy.local/v1/generate?alt=json").extract(PNG_BYTES, "image/png")
    assert calls[0]["url"].startswith("https://proxy.local/v1/generate?")
    assert "alt=json" in calls[0]["url"] and "key=abc" in calls[0]["url"]


def test_gemini_parses_record(captured_post):
    captured_post(FakeResponse(json_data=gemini_reply(RECORD_JSON)))
    record = GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")
    assert record.is_prescription
    assert [m.name for m in record.medications] == ["Dolo 650", "Azithral 500"]
    assert record.medications[0].dosage == "650 மி.கி"


def test_gemini_not_a_prescription(captured_post):
    captured_post(FakeResponse(json_data=gemini_reply('{"isPrescription": false}')))
    record = GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/jpeg")
    assert record.is_prescription is False
    assert record.medications == []


def test_empty_reply_is_no_data(captured_post):
    captured_post(FakeResponse(json_data=gemini_reply("")))
    with pytest.raises(ExtractionError, match="No data returned"):
        GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")


def test_no_candidates_is_no_data(captured_post):
    captured_post(FakeResponse(json_data={"promptFeedback": {"blockReason": "SAFETY"}}))
    with pytest.raises(ExtractionError) as exc_info:
        GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")
    assert str(exc_info.value) == NO_DATA_MESSAGE


def test_malformed_json_is_parse_failure(captured_post):
    captured_post(FakeResponse(json_data=gemini_reply('{"isPrescription": tru')))
    with pytest.raises(ExtractionError, match="Could not parse"):
        GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")


def test_schema_mismatch_is_parse_failure(captured_post):
    captured_post(FakeResponse(json_data=gemini_reply('{"isPrescription": true, "medications": [{"dosage": "5ml"}]}')))
    with pytest.raises(ExtractionError, match="Could not parse"):
        GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")


def test_transport_error_carries_message(captured_post):
    captured_post(exc=requests.exceptions.ConnectionError("connection refused"))
    with pytest.raises(ExtractionError, match="connection refused"):
        GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")


def test_timeout(captured_post):
    captured_post(exc=requests.exceptions.ReadTimeout("slow"))
    with pytest.raises(ExtractionError, match="timed out"):
        GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")


def test_http_error_carries_status_and_message(captured_post):
    body = {"error": {"code": 400, "message": "API key not valid."}}
    captured_post(FakeResponse(status_code=400, json_data=body, reason="Bad Request"))
    with pytest.raises(ExtractionError) as exc_info:
        GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")
    assert "HTTP 400" in str(exc_info.value)
    assert "API key not valid." in str(exc_info.value)


def test_missing_key_never_calls_out(captured_post):
    calls = captured_post(FakeResponse(json_data=gemini_reply(RECORD_JSON)))
    with pytest.raises(ExtractionError, match="not configured"):
        GeminiExtractor(api_key=None).extract(PNG_BYTES, "image/png")
    assert calls == []


def test_parse_record_strips_code_fence():
    record = parse_record("```json\n" + RECORD_JSON + "\n```")
    assert record.medications[1].generic_name == "Azithromycin"


def test_parse_record_rejects_non_object():
    with pytest.raises(ExtractionError, match="Could not parse"):
        parse_record("[1, 2, 3]")


def test_openai_compatible_request_and_parse(captured_post):
    reply = {"choices": [{"message": {"role": "assistant", "content": RECORD_JSON}, "finish_reason": "stop"}]}
    calls = captured_post(FakeResponse(json_data=reply))
    extractor = OpenAICompatibleExtractor(api_key="sk-test", api_url="http://llm.local/v1/chat/completions", model="vision-model")
    record = extractor.extract(PNG_BYTES, "image/png")

    assert record.is_prescription
    call = calls[0]
    assert call["url"] == "http://llm.local/v1/chat/completions"
    assert call["headers"] == {"Authorization": "Bearer sk-test"}
    content = call["json"]["messages"][0]["content"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
    response_format = call["json"]["response_format"]
    assert response_format["type"] == "json_schema"
    assert response_format["json_schema"]["strict"] is True
    assert response_format["json_schema"]["schema"]["additionalProperties"] is False


def test_openai_compatible_parses_null_fields(captured_post):
    reply_json = json.dumps({
        "isPrescription": True,
        "date": None,
        "diagnosis": None,
        "generalAdvice": None,
        "followUpDate": None,
        "doctor": {"name": "Dr. Meena Raghavan", "specialty": None, "licenseNumber": None, "hospital": None, "contact": None},
        "patient": {"name": None, "age": None, "gender": None, "weight": None},
        "medications": [{
            "name": "Dolo 650", "genericName": "Paracetamol", "dosage": None,
            "frequency": None, "duration": None, "instructions": None, "type": None,
        }],
    })
    captured_post(FakeResponse(json_data={"choices": [{"message": {"content": reply_json}}]}))
    record = OpenAICompatibleExtractor(api_key="sk-test").extract(PNG_BYTES, "image/png")
    assert record.doctor.name == "Dr. Meena Raghavan"
    assert record.patient.age is None
    assert record.medications[0].generic_name == "Paracetamol"


def test_openai_compatible_empty_reply(captured_post):
    captured_post(FakeResponse(json_data={"choices": []}))
    with pytest.raises(ExtractionError, match="No data returned"):
        OpenAICompatibleExtractor(api_key="sk-test").extract(PNG_BYTES, "image/png")


@pytest.mark.parametrize("body", [
    {"choices": ["oops"]},
    {"choices": [{"message": "plain text"}]},
    {"choices": [{"message": {"content": None}}]},
    {"choices": [{"message": {"content": [{"type": "text", "text": "{}"}]}}]},
    ["not", "an", "object"],
])
def test_openai_compatible_unexpected_reply_shape(captured_post, body):
    captured_post(FakeResponse(json_data=body))
    with pytest.raises(ExtractionError) as exc_info:
        OpenAICompatibleExtractor(api_key="sk-test").extract(PNG_BYTES, "image/png")
    assert str(exc_info.value) == NO_DATA_MESSAGE


@pytest.mark.parametrize("body", [
    {"candidates": ["oops"]},
    {"candidates": [{"content": "plain text"}]},
    {"candidates": [{"content": {"parts": "plain text"}}]},
    {"candidates": [{"content": {"parts": [{"text": None}]}}]},
    {"candidates": [{"content": {"parts": ["oops"]}}]},
    {"candidates": "oops"},
    ["not", "an", "object"],
])
def test_gemini_unexpected_reply_shape(captured_post, body):
    captured_post(FakeResponse(json_data=body))
    with pytest.raises(ExtractionError) as exc_info:
        GeminiExtractor(api_key="abc").extract(PNG_BYTES, "image/png")
    assert str(exc_info.value) == NO_DATA_MESSAGE


def test_parse_record_coerces_numeric_strings():
    record = parse_record('{"isPrescription": true, "patient": {"age": 34, "weight": 61.5}}')
    assert record.patient.age == "34"
    assert record.patient.weight == "61.5"


def test_get_extractor_selects_provider(monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER", "gemini")
    assert isinstance(get_extractor(), GeminiExtractor)
    monkeypatch.setattr(settings, "LLM_PROVIDER", "openai")
    assert isinstance(get_extractor(), OpenAICompatibleExtractor)
    monkeypatch.setattr(settings, "LLM_PROVIDER", "carrier-pigeon")
    with pytest.raises(ValueError):
        get_extractor()


def test_get_extractor_applies_language_settings(monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER", "gemini")
    monkeypatch.setattr(settings, "TARGET_LANGUAGE", "Kannada")
    extractor = get_extractor()
    assert extractor.policy.target_language == "Kannada"
