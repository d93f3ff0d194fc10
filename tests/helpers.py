from scriptscan.schemas.drug_image import ImageResult

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 32
JPEG_BYTES = b'\xff\xd8\xff\xe0' + b'\x00' * 32


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None, reason="OK"):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.reason = reason

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeExtractor:
    def __init__(self, record=None, error=None):
        self.record = record
        self.error = error
        self.calls = []

    def extract(self, image_bytes, mime_type):
        self.calls.append((image_bytes, mime_type))
        if self.error is not None:
            raise self.error
        return self.record


class FakeResolver:
    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    def resolve(self, name, generic_name=None):
        self.calls.append((name, generic_name))
        return self.results.get(name, ImageResult.not_found())


def gemini_reply(text, finish_reason="STOP"):
    return {
        "candidates": [{
            "content": {"role": "model", "parts": [{"text": text}]},
            "finishReason": finish_reason,
        }]
    }


