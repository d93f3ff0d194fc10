from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
import logging

from scriptscan.core.errors import ExtractionError, ImageTooLargeError, ReadError, UnsupportedImageError
from scriptscan.schemas.extraction import ExtractionOut
from scriptscan.services.drug_image_service import DrugImageResolver, get_resolver, resolve_all
from scriptscan.services.extraction_service import PrescriptionExtractor, get_extractor
from scriptscan.services.intake_service import read_upload

router = APIRouter()


@router.post("/extract", response_model=ExtractionOut)
def extract_prescription(
    file: UploadFile = File(...),
    resolve_images: bool = Form(False, alias="resolveImages"),
    extractor: PrescriptionExtractor = Depends(get_extractor),
    resolver: DrugImageResolver = Depends(get_resolver),
):
    try:
        upload = read_upload(file)
    except ImageTooLargeError as e:
        raise HTTPException(status_code=413, detail={"error": str(e)})
    except UnsupportedImageError as e:
        raise HTTPException(status_code=415, detail={"error": str(e)})
    except ReadError as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})

    try:
        record = extractor.extract(upload.data, upload.mime_type)
    except ExtractionError as e:
        logging.error(f"Extraction failed: {str(e)}")
        raise HTTPException(status_code=502, detail={"error": str(e)})

    images = {}
    if resolve_images and record.is_prescription:
        images = resolve_all(record.medications, resolver)
    return ExtractionOut(prescription=record, images=images)
