import os
from typing import Any, Dict, List, Optional

from fastapi.templating import Jinja2Templates

from scriptscan.schemas.prescription import Medication, PrescriptionRecord
from scriptscan.services.drug_image_service import fallback_search_url

TEMPLATES_DIR = os.path.normpath(os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'templates'))
templates = Jinja2Templates(directory=TEMPLATES_DIR)

NO_MEDICATIONS_TEXT = "No medications extracted from the document."


def _text(value: Optional[str]) -> Optional[str]:
    """Blank strings count as absent."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def medication_row(index: int, med: Medication) -> Dict[str, Any]:
    name = _text(med.name) or ""
    generic = _text(med.generic_name)
    if generic and generic.lower() == name.lower():
        generic = None
    return {
        "index": index,
        "name": name,
        "generic_name": generic,
        "lookup_generic_name": _text(med.generic_name),
        "type": _text(med.type),
        "dosage": _text(med.dosage),
        "frequency": _text(med.frequency),
        "duration": _text(med.duration),
        "instructions": _text(med.instructions),
        "fallback_url": fallback_search_url(name),
    }


def build_view(record: PrescriptionRecord) -> Dict[str, Any]:
    """Flatten a record into what the template shows; absent fields are None."""
    if not record.is_prescription:
        return {"is_prescription": False}

    diagnosis = _text(record.diagnosis)
    advice = _text(record.general_advice)
    rows: List[Dict[str, Any]] = [medication_row(i, med) for i, med in enumerate(record.medications)]
    return {
        "is_prescription": True,
        "doctor": {
            "name": _text(record.doctor.name) or "Unknown Doctor",
            "specialty": _text(record.doctor.specialty),
            "hospital": _text(record.doctor.hospital),
            "license_number": _text(record.doctor.license_number),
            "contact": _text(record.doctor.contact),
        },
        "patient": {
            "name": _text(record.patient.name) or "Unknown Patient",
            "age": _text(record.patient.age),
            "gender": _text(record.patient.gender),
            "weight": _text(record.patient.weight),
        },
        "date": _text(record.date),
        "show_notes": bool(diagnosis or advice),
        "diagnosis": diagnosis,
        "general_advice": advice,
        "medications": rows,
        "medication_count": len(rows),
        "follow_up_date": _text(record.follow_up_date),
    }


def render_prescription(record: PrescriptionRecord) -> str:
    return templates.get_template("prescription.html").render(
        view=build_view(record),
        no_medications_text=NO_MEDICATIONS_TEXT,
    )
