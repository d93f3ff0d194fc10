from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from scriptscan.routes import pages, extraction, drug_images
from scriptscan.core.config import settings
import logging
import os

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="ScriptScan v1.0")

allow_origins = list(settings.ALLOWED_ORIGINS or [])

logging.info(f"Allowed CORS origins: {allow_origins}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATIC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'static')
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.exception("Unhandled server error")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )

app.include_router(pages.router, tags=["pages"])
app.include_router(extraction.router, prefix="/api", tags=["extraction"])
app.include_router(drug_images.router, prefix="/drug-image", tags=["drug-images"])

@app.get('/health')
def health_check():
    return {"status": "healthy"}
