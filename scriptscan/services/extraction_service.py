import json
import logging
import time
from typing import Any, Dict, Optional, Protocol
from urllib.parse import urlparse, parse_qsl, urlunparse, urlencode

import requests
from pydantic import ValidationError

from scriptscan.core.config import settings
from scriptscan.core.errors import ExtractionError
from scriptscan.schemas.prescription import PrescriptionRecord, response_schema, strict_json_schema
from scriptscan.services.intake_service import encode_image
from scriptscan.services.language_policy import FieldLanguage, LanguagePolicy
from scriptscan.utils.llm_logger import log_llm_event
from scriptscan.utils.prompts import render_prompt

DEFAULT_MODEL = 'gemini-2.5-flash'
NO_DATA_MESSAGE = "No data returned from the extraction service."


class PrescriptionExtractor(Protocol):
    def extract(self, image_bytes: bytes, mime_type: str) -> PrescriptionRecord:
        ...


def build_prompt(policy: LanguagePolicy) -> str:
    """Render the two-stage identify-then-extract instruction for a language policy."""
    target_fields = ", ".join(f.capitalize() for f in policy.fields_in(FieldLanguage.TARGET)) or "none"
    rules = "\n".join(policy.rules())
    rendered = render_prompt(
        'extraction_system.txt',
        {
            'TARGET_LANGUAGE': policy.target_language.upper(),
            'REFERENCE_LANGUAGE': policy.reference_language,
            'TARGET_FIELDS': target_fields,
            'FIELD_RULES': rules,
        }
    )
    return rendered or (
        "Analyze the attached image. Is it a medical prescription?\n"
        "If yes, extract the details into the structured JSON format provided.\n\n"
        f"The medication details ({target_fields}) must be in {policy.target_language}.\n"
        f"For the 'medications' list, strictly follow these language rules:\n{rules}\n\n"
        f"Extract the doctor's and patient's details in {policy.reference_language} (or as they appear).\n"
        f"Diagnosis and General Advice can be in {policy.reference_language}.\n"
        "If handwriting is difficult to read, make a best educated guess based on medical context.\n"
        "If the image is NOT a medical prescription, set 'isPrescription' to false and leave other "
        "fields empty or default.\n"
    )


def _strip_code_fences(content: str) -> str:
    content = content.strip()
    if content.startswith('```') and content.endswith('```'):
        content = content[3:-3].strip()
        if content.lower().startswith('json'):
            content = content[4:].lstrip()
    return content


def parse_record(text: Optional[str]) -> PrescriptionRecord:
    """Turn the model's JSON text into a PrescriptionRecord or raise ExtractionError."""
    if not isinstance(text, str) or not text.strip():
        raise ExtractionError(NO_DATA_MESSAGE)
    try:
        parsed_obj = json.loads(_strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Could not parse extraction response: {e.msg}") from e
    if not isinstance(parsed_obj, dict):
        raise ExtractionError("Could not parse extraction response: expected a JSON object")
    try:
        return PrescriptionRecord.model_validate(parsed_obj)
    except ValidationError as e:
        raise ExtractionError(f"Could not parse extraction response: {e.error_count()} schema errors") from e


def _error_detail(r: requests.Response) -> str:
    try:
        body = r.json()
        err = body.get('error') if isinstance(body, dict) else None
        if isinstance(err, dict) and err.get('message'):
            return str(err['message'])
        if isinstance(err, str):
            return err
    except ValueError:
        pass
    return r.reason or ''


class GeminiExtractor:
    """Extraction over the Gemini ``generateContent`` REST endpoint."""

    provider = 'gemini'

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        policy: Optional[LanguagePolicy] = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self.api_url = api_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
        self.policy = policy or LanguagePolicy()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    def _url(self) -> str:
        parsed = urlparse(self.api_url)
        q = dict(parse_qsl(parsed.query))
        q['key'] = str(self.api_key)
        return urlunparse(parsed._replace(query=urlencode(q)))

    def build_payload(self, image_bytes: bytes, mime_type: str) -> Dict[str, Any]:
        return {
            "contents": [{
                "role": "user",
                "parts": [
                    {"inlineData": {"mimeType": mime_type, "data": encode_image(image_bytes)}},
                    {"text": build_prompt(self.policy)},
                ],
            }],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": response_schema(),
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }

    @staticmethod
    def _first_candidate(resp_data: Any) -> Optional[Dict[str, Any]]:
        cands = resp_data.get('candidates') if isinstance(resp_data, dict) else None
        if isinstance(cands, list) and cands and isinstance(cands[0], dict):
            return cands[0]
        return None

    @classmethod
    def _reply_text(cls, resp_data: Any) -> Optional[str]:
        cand = cls._first_candidate(resp_data)
        if cand is None:
            return None
        content = cand.get('content')
        parts = content.get('parts') if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return None
        texts = [p['text'] for p in parts if isinstance(p, dict) and isinstance(p.get('text'), str)]
        return "".join(texts).strip()

    def extract(self, image_bytes: bytes, mime_type: str) -> PrescriptionRecord:
        if not self.api_key:
            logging.error('Gemini API key missing')
            raise ExtractionError("Extraction service API key is not configured")

        meta = {"provider": self.provider, "model": self.model}
        t0 = time.time()
        try:
            r = requests.post(self._url(), json=self.build_payload(image_bytes, mime_type), timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logging.error("Gemini request timed out")
            log_llm_event('extraction.gemini.error', {**meta, "error": "timeout"})
            raise ExtractionError("Request to the extraction service timed out") from e
        except requests.exceptions.RequestException as e:
            logging.error(f"Gemini request failed: {str(e)}")
            log_llm_event('extraction.gemini.error', {**meta, "error": str(e)})
            raise ExtractionError(f"Extraction service request failed: {str(e)}") from e
        duration_ms = int((time.time() - t0) * 1000)

        if not r.ok:
            detail = _error_detail(r)
            log_llm_event('extraction.gemini.error', {**meta, "status": r.status_code, "duration_ms": duration_ms, "error": detail})
            raise ExtractionError(f"Extraction service returned HTTP {r.status_code}: {detail}".rstrip(': '))

        try:
            resp_data = r.json()
        except ValueError as e:
            raise ExtractionError("Could not parse extraction response: body is not JSON") from e

        cand = self._first_candidate(resp_data)
        finish_reason = cand.get('finishReason') if cand is not None else None
        log_llm_event('extraction.gemini.response', {
            **meta,
            "status": r.status_code,
            "duration_ms": duration_ms,
            "finish_reason": finish_reason,
        })
        return parse_record(self._reply_text(resp_data))


class OpenAICompatibleExtractor:
    """Extraction over any OpenAI-style ``chat/completions`` endpoint with vision input."""

    provider = 'openai'

    def __init__(
        self,
        api_key: Optional[str],
        api_url: Optional[str] = None,
        model: Optional[str] = None,
        policy: Optional[LanguagePolicy] = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.api_url = api_url or "https://api.openai.com/v1/chat/completions"
        self.model = model or "gpt-4o-mini"
        self.policy = policy or LanguagePolicy()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    def build_payload(self, image_bytes: bytes, mime_type: str) -> Dict[str, Any]:
        data_url = f"data:{mime_type};base64,{encode_image(image_bytes)}"
        return {
            "model": self.model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": build_prompt(self.policy)},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "prescription",
                    "strict": True,
                    "schema": strict_json_schema(),
                },
            },
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    def extract(self, image_bytes: bytes, mime_type: str) -> PrescriptionRecord:
        if not self.api_key:
            logging.error('LLM API key missing')
            raise ExtractionError("Extraction service API key is not configured")

        meta = {"provider": self.provider, "model": self.model}
        headers = {'Authorization': f'Bearer {self.api_key}'}
        t0 = time.time()
        try:
            r = requests.post(self.api_url, json=self.build_payload(image_bytes, mime_type), headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logging.error("Upstream LLM request timed out")
            log_llm_event('extraction.llm.error', {**meta, "error": "timeout"})
            raise ExtractionError("Request to the extraction service timed out") from e
        except requests.exceptions.RequestException as e:
            logging.error(f"Upstream LLM request failed: {str(e)}")
            log_llm_event('extraction.llm.error', {**meta, "error": str(e)})
            raise ExtractionError(f"Extraction service request failed: {str(e)}") from e
        duration_ms = int((time.time() - t0) * 1000)

        if not r.ok:
            detail = _error_detail(r)
            log_llm_event('extraction.llm.error', {**meta, "status": r.status_code, "duration_ms": duration_ms, "error": detail})
            raise ExtractionError(f"Extraction service returned HTTP {r.status_code}: {detail}".rstrip(': '))

        try:
            data = r.json()
        except ValueError as e:
            raise ExtractionError("Could not parse extraction response: body is not JSON") from e

        reply = None
        finish_reason = None
        choices = data.get('choices') if isinstance(data, dict) else None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            first = choices[0]
            finish_reason = first.get('finish_reason')
            message = first.get('message')
            if isinstance(message, dict) and isinstance(message.get('content'), str):
                reply = message['content']
        log_llm_event('extraction.llm.response', {
            **meta,
            "status": r.status_code,
            "duration_ms": duration_ms,
            "finish_reason": finish_reason,
        })
        return parse_record(reply)


def get_extractor() -> PrescriptionExtractor:
    """Build the configured extractor; used as a FastAPI dependency."""
    provider = (settings.LLM_PROVIDER or 'gemini').lower()
    policy = LanguagePolicy.from_settings(settings)
    common = dict(
        api_key=settings.LLM_API_KEY,
        model=settings.LLM_MODEL,
        api_url=settings.LLM_API_URL,
        policy=policy,
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
    if provider == 'gemini':
        return GeminiExtractor(**common)
    if provider in ('openai', 'openai-compatible'):
        return OpenAICompatibleExtractor(**common)
    raise ValueError(f"Unsupported LLM_PROVIDER: {settings.LLM_PROVIDER}")
