import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from scriptscan.core.config import settings

_LOGGER_NAME = "llm_file_logger"
_LOG_FILE_NAME = 'llm.log'

# Only call metadata may be logged here; prompts, images and model output are
# prescription content and stay in memory.
_ALLOWED_KEYS = {"provider", "model", "status", "duration_ms", "error", "finish_reason"}


def _ensure_logger() -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if not logger.handlers:
        os.makedirs(settings.LLM_LOG_DIR, exist_ok=True)
        handler = logging.FileHandler(os.path.join(settings.LLM_LOG_DIR, _LOG_FILE_NAME), encoding='utf-8')
        handler.setLevel(logging.INFO)
        formatter = logging.Formatter('%(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        # Do not propagate to root to avoid terminal output
        logger.propagate = False
    return logger


def log_llm_event(event: str, payload: Optional[Dict[str, Any]] = None) -> None:
    """Write a single JSON line with timestamp, event type, and call metadata.

    event: short label, e.g., 'extraction.gemini.response', 'extraction.gemini.error'
    payload: metadata dict; keys outside the allowed set are dropped
    """
    try:
        logger = _ensure_logger()
        line = {
            "ts": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "event": event,
            "payload": {k: v for k, v in (payload or {}).items() if k in _ALLOWED_KEYS},
        }
        logger.info(json.dumps(line, ensure_ascii=False))
    except Exception:
        logging.debug("Could not write LLM event %s", event, exc_info=True)
