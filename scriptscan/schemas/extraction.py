from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Dict

from scriptscan.schemas.drug_image import ImageResult
from scriptscan.schemas.prescription import PrescriptionRecord


class ExtractionOut(BaseModel):
    prescription: PrescriptionRecord
    images: Dict[int, ImageResult] = Field(default_factory=dict, description="Drug image per medication index, when requested")
