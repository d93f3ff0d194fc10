from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)


class Doctor(_CamelModel):
    name: Optional[str] = None
    specialty: Optional[str] = None
    license_number: Optional[str] = None
    hospital: Optional[str] = None
    contact: Optional[str] = None


class Patient(_CamelModel):
    name: Optional[str] = None
    age: Optional[str] = None
    gender: Optional[str] = None
    weight: Optional[str] = None


class Medication(_CamelModel):
    name: str = Field(..., description="Brand name as printed on the prescription")
    generic_name: Optional[str] = Field(None, description="Scientific name in English for image search")
    dosage: Optional[str] = Field(None, description="e.g., 500mg, 10ml")
    frequency: Optional[str] = Field(None, description="e.g., Twice daily, every 8 hours")
    duration: Optional[str] = Field(None, description="e.g., 5 days")
    instructions: Optional[str] = Field(None, description="e.g., After food, before sleep")
    type: Optional[str] = Field(None, description="e.g., Tablet, Syrup, Capsule")


class PrescriptionRecord(_CamelModel):
    is_prescription: bool = Field(False, description="True if the image is a medical prescription.")
    date: Optional[str] = Field(None, description="Date of the prescription.")
    diagnosis: Optional[str] = Field(None, description="Diagnosed condition or reason for visit.")
    general_advice: Optional[str] = Field(None, description="Any general lifestyle or dietary advice mentioned.")
    follow_up_date: Optional[str] = Field(None, description="Date for the next visit.")
    doctor: Doctor = Field(default_factory=Doctor)
    patient: Patient = Field(default_factory=Patient)
    medications: List[Medication] = Field(default_factory=list)


def _string(description: Optional[str] = None) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": "STRING"}
    if description:
        prop["description"] = description
    return prop


def _object_schema(model: type[BaseModel]) -> Dict[str, Any]:
    """Translate a flat model of string fields into a Gemini OBJECT schema keyed by wire names."""
    properties: Dict[str, Any] = {}
    for field_name, info in model.model_fields.items():
        properties[info.alias or field_name] = _string(info.description)
    return {"type": "OBJECT", "properties": properties}


def response_schema() -> Dict[str, Any]:
    """Structured-output schema sent as ``generationConfig.responseSchema``.

    Gemini accepts an OpenAPI subset without ``$ref``, so the nested models are
    inlined instead of using ``PrescriptionRecord.model_json_schema()``.
    """
    fields = PrescriptionRecord.model_fields
    medication = _object_schema(Medication)
    medication["required"] = ["name"]
    properties: Dict[str, Any] = {
        "isPrescription": {"type": "BOOLEAN", "description": fields["is_prescription"].description},
        "date": _string(fields["date"].description),
        "diagnosis": _string(fields["diagnosis"].description),
        "generalAdvice": _string(fields["general_advice"].description),
        "followUpDate": _string(fields["follow_up_date"].description),
        "doctor": _object_schema(Doctor),
        "patient": _object_schema(Patient),
        "medications": {"type": "ARRAY", "items": medication},
    }
    return {"type": "OBJECT", "properties": properties, "required": ["isPrescription"]}


def _strict_object(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def _strict_fields(model: type[BaseModel]) -> Dict[str, Any]:
    """Flat string fields; optional ones are nullable since strict mode requires every key."""
    properties: Dict[str, Any] = {}
    for field_name, info in model.model_fields.items():
        prop: Dict[str, Any] = {"type": "string" if info.is_required() else ["string", "null"]}
        if info.description:
            prop["description"] = info.description
        properties[info.alias or field_name] = prop
    return properties


def strict_json_schema() -> Dict[str, Any]:
    """JSON Schema for OpenAI-style ``response_format`` with ``strict: true``.

    Strict mode wants every property listed in ``required``, no additional
    properties and no ``$ref``, which ``model_json_schema()`` does not give.
    """
    fields = PrescriptionRecord.model_fields
    properties: Dict[str, Any] = {
        "isPrescription": {"type": "boolean", "description": fields["is_prescription"].description},
    }
    for name in ("date", "diagnosis", "general_advice", "follow_up_date"):
        info = fields[name]
        properties[info.alias or name] = {"type": ["string", "null"], "description": info.description}
    properties["doctor"] = _strict_object(_strict_fields(Doctor))
    properties["patient"] = _strict_object(_strict_fields(Patient))
    properties["medications"] = {"type": "array", "items": _strict_object(_strict_fields(Medication))}
    return _strict_object(properties)
