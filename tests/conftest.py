import os
import tempfile

# Keep the metadata log out of the working tree and make sure no real key leaks in
os.environ.setdefault("LLM_LOG_DIR", tempfile.mkdtemp(prefix="scriptscan-logs-"))
os.environ["LLM_API_KEY"] = "test-key"

import pytest
from fastapi.testclient import TestClient

from scriptscan.schemas.prescription import PrescriptionRecord
from scriptscan.services.drug_image_service import get_resolver
from scriptscan.services.extraction_service import get_extractor
from scriptscan.services.session_service import store
from tests.helpers import FakeExtractor, FakeResolver


@pytest.fixture
def dolo_record():
    return PrescriptionRecord.model_validate({
        "isPrescription": True,
        "doctor": {"name": "Dr. Meena Raghavan", "specialty": "General Physician", "licenseNumber": "TN-44521"},
        "patient": {"name": "Arun Kumar", "age": "34", "gender": "Male"},
        "date": "12/03/2024",
        "diagnosis": "Viral fever",
        "medications": [
            {"name": "Dolo 650", "genericName": "Paracetamol", "dosage": "650mg", "frequency": "Twice daily"},
        ],
    })


@pytest.fixture
def not_prescription_record():
    return PrescriptionRecord.model_validate({
        "isPrescription": False,
        "diagnosis": "should never show",
        "medications": [{"name": "Ghost Pill"}],
    })


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def fake_resolver():
    return FakeResolver()


@pytest.fixture
def client(fake_extractor, fake_resolver):
    from scriptscan.main import app

    app.dependency_overrides[get_extractor] = lambda: fake_extractor
    app.dependency_overrides[get_resolver] = lambda: fake_resolver
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    for session_id in list(store._states):
        store.discard(session_id)
