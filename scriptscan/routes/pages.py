from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from typing import Optional
import logging

from scriptscan.core.config import settings
from scriptscan.core.errors import AnalysisInProgressError, ExtractionError, InputError, ReadError
from scriptscan.services.extraction_service import PrescriptionExtractor, get_extractor
from scriptscan.services.intake_service import ImageUpload, read_upload
from scriptscan.services.presentation import render_prescription, templates
from scriptscan.services import session_service
from scriptscan.services.session_service import SESSION_COOKIE, SessionState, store

router = APIRouter()


def _session_id(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE)


def _redirect(session_id: str) -> RedirectResponse:
    resp = RedirectResponse("/", status_code=303)
    resp.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    return resp


def _same_attempt(state: SessionState, upload: Optional[ImageUpload]) -> bool:
    """True when the session is still waiting on the analysis of this upload."""
    return state.analyzing and state.upload == upload


@router.get("/", response_class=HTMLResponse)
def index(request: Request):
    state = store.get(_session_id(request))
    prescription_html = render_prescription(state.record) if state.record is not None else ""
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "state": state,
            "prescription_html": prescription_html,
            "max_upload_mb": settings.MAX_UPLOAD_MB,
        },
    )


@router.post("/upload")
def upload_file(request: Request, file: Optional[UploadFile] = File(None)):
    session_id = _session_id(request) or store.new_id()
    if file is None:
        return _redirect(session_id)

    try:
        upload = read_upload(file)
    except ReadError as e:
        message = str(e) or "Error reading file."
        logging.warning(f"Upload rejected: {message}")
        store.replace(session_id, lambda s: s if s.analyzing else session_service.read_failed(message))
        return _redirect(session_id)

    try:
        store.replace(session_id, lambda s: session_service.select_file(s, upload))
    except AnalysisInProgressError as e:
        raise HTTPException(status_code=409, detail={"error": str(e)})
    return _redirect(session_id)


@router.post("/analyze")
def analyze(request: Request, extractor: PrescriptionExtractor = Depends(get_extractor)):
    session_id = _session_id(request) or store.new_id()
    try:
        state = store.replace(session_id, session_service.begin_analysis)
    except InputError:
        return _redirect(session_id)
    except AnalysisInProgressError as e:
        raise HTTPException(status_code=409, detail={"error": str(e)})

    upload = state.upload
    try:
        record = extractor.extract(upload.data, upload.mime_type)
    except ExtractionError as e:
        message = str(e) or "Failed to analyze prescription. Please try again."
        logging.error(f"Extraction failed: {message}")
        store.replace(session_id, lambda s: session_service.fail(s, message) if _same_attempt(s, upload) else s)
        return _redirect(session_id)
    except Exception:
        logging.exception("Unexpected error during extraction")
        store.replace(
            session_id,
            lambda s: session_service.fail(s, "An unexpected error occurred.") if _same_attempt(s, upload) else s,
        )
        return _redirect(session_id)

    store.replace(session_id, lambda s: session_service.complete(s, record) if _same_attempt(s, upload) else s)
    return _redirect(session_id)


@router.post("/reset")
def reset(request: Request):
    session_id = _session_id(request) or store.new_id()
    store.replace(session_id, lambda s: session_service.reset())
    return _redirect(session_id)


@router.get("/preview")
def preview(request: Request):
    state = store.get(_session_id(request))
    if state.upload is None:
        raise HTTPException(status_code=404, detail="No image selected")
    return Response(
        content=state.upload.data,
        media_type=state.upload.mime_type,
        headers={"Cache-Control": "no-store"},
    )
