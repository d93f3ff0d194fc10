"""Language routing for the extraction prompt.

Each medication field is assigned one of three destinations: kept as printed,
written in the reference language (for searchability), or translated into the
target language the patient reads. The prompt rules are generated from this
object, so changing the policy never means editing prompt prose.
"""
from enum import Enum
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldLanguage(str, Enum):
    ORIGINAL = "original"
    REFERENCE = "reference"
    TARGET = "target"


# Example hints shown to the model for each medication field.
_FIELD_HINTS: Dict[str, str] = {
    "name": "the BRAND name exactly as it appears on the paper",
    "genericName": "the GENERIC/SCIENTIFIC name (e.g., if 'Dolo' is written, infer 'Paracetamol'); used for image search",
    "dosage": "strength and units (e.g., \"500 mg\", \"10 ml\")",
    "frequency": "how often to take it (e.g., \"Twice a day\", \"Morning/Night\")",
    "duration": "how long to take it (e.g., \"5 days\")",
    "instructions": "specific instructions (e.g., \"After food\")",
    "type": "the dosage form (e.g., \"Tablet\", \"Syrup\")",
}

DEFAULT_MEDICATION_ROUTING: Dict[str, FieldLanguage] = {
    "name": FieldLanguage.ORIGINAL,
    "genericName": FieldLanguage.REFERENCE,
    "dosage": FieldLanguage.TARGET,
    "frequency": FieldLanguage.TARGET,
    "duration": FieldLanguage.TARGET,
    "instructions": FieldLanguage.TARGET,
    "type": FieldLanguage.TARGET,
}


class LanguagePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_language: str = "Tamil"
    reference_language: str = "English"
    medication_fields: Mapping[str, FieldLanguage] = Field(
        default_factory=lambda: dict(DEFAULT_MEDICATION_ROUTING)
    )

    def language_for(self, field: str) -> Optional[str]:
        """Return the language a field must be written in, or None to keep it as printed."""
        routing = self.medication_fields.get(field, FieldLanguage.ORIGINAL)
        if routing is FieldLanguage.TARGET:
            return self.target_language
        if routing is FieldLanguage.REFERENCE:
            return self.reference_language
        return None

    def fields_in(self, routing: FieldLanguage) -> List[str]:
        return [name for name, value in self.medication_fields.items() if value is routing]

    def rules(self) -> List[str]:
        lines = []
        for i, (field, routing) in enumerate(self.medication_fields.items(), start=1):
            hint = _FIELD_HINTS.get(field, field)
            if routing is FieldLanguage.ORIGINAL:
                lines.append(f"{i}. '{field}': Keep {hint} in its ORIGINAL language and script.")
            elif routing is FieldLanguage.REFERENCE:
                lines.append(f"{i}. '{field}': Write {hint} in {self.reference_language.upper()}.")
            else:
                lines.append(f"{i}. '{field}': Translate {hint} into clear {self.target_language.upper()}.")
        return lines

    @classmethod
    def from_settings(cls, settings) -> "LanguagePolicy":
        return cls(
            target_language=settings.TARGET_LANGUAGE,
            reference_language=settings.REFERENCE_LANGUAGE,
        )
