import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlencode, urlparse, parse_qsl, urlunparse

import requests

from scriptscan.core.config import settings
from scriptscan.core.errors import ImageLookupError
from scriptscan.schemas.drug_image import ImageResult
from scriptscan.schemas.prescription import Medication

# A trailing quantity, optionally followed by a unit: "650", "650 mg", "500mg", "0.5%"
_DOSAGE_SUFFIX = re.compile(
    r"(?:^|\s)\d+(?:[.,]\d+)?\s*(?:mg|mcg|µg|ug|g|kg|ml|l|iu|units?|%)?\s*$",
    re.IGNORECASE,
)


def normalize_term(term: Optional[str]) -> str:
    """Strip trailing dosage tokens from a drug name: "Dolo 650 mg" -> "Dolo"."""
    s = re.sub(r"\s+", " ", (term or "")).strip()
    while True:
        stripped = _DOSAGE_SUFFIX.sub("", s).strip()
        if stripped == s:
            return s
        s = stripped


def candidate_terms(name: str, generic_name: Optional[str] = None) -> List[str]:
    """Ordered search terms: generic name first, then the printed name.

    Empty terms are skipped and a term equal to an earlier one (case-insensitive)
    is only queried once.
    """
    out: List[str] = []
    seen = set()
    for raw in (generic_name, name):
        term = normalize_term(raw)
        if term and term.lower() not in seen:
            seen.add(term.lower())
            out.append(term)
    return out


def fallback_search_url(name: str, qualifier: Optional[str] = None, base_url: Optional[str] = None) -> str:
    """General image-search link shown when no reference image is found. Never fetched."""
    qualifier = settings.IMAGE_SEARCH_QUALIFIER if qualifier is None else qualifier
    base_url = base_url or settings.IMAGE_SEARCH_URL
    query = f"{name} {qualifier}".strip()
    parsed = urlparse(base_url)
    q = parse_qsl(parsed.query)
    q.append(('q', query))
    return urlunparse(parsed._replace(query=urlencode(q)))


class DrugImageResolver:
    """Resolve a medication to a reference image URL via a configured lookup API.

    The API answers ``GET ?name=<term>`` with ``{"nlmRxImages": [{"imageUrl": ...}]}``.
    Without an API URL every medication resolves to not found.
    """

    def __init__(self, api_url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_url = api_url or settings.DRUG_IMAGE_API_URL
        self.timeout = timeout or settings.DRUG_IMAGE_TIMEOUT_SECONDS

    def query(self, term: str) -> Optional[str]:
        """Return the first image URL for a term, None when the API has no entry.

        Raises ImageLookupError for transport, status or payload failures.
        """
        try:
            r = requests.get(self.api_url, params={"name": term}, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ImageLookupError(f"lookup request failed for {term!r}: {e}") from e
        if not r.ok:
            raise ImageLookupError(f"lookup returned HTTP {r.status_code} for {term!r}")
        try:
            data = r.json()
        except ValueError as e:
            raise ImageLookupError(f"lookup returned invalid JSON for {term!r}") from e
        if not isinstance(data, dict):
            raise ImageLookupError(f"unexpected lookup payload for {term!r}")

        images = data.get('nlmRxImages') or []
        if not isinstance(images, list):
            raise ImageLookupError(f"unexpected lookup payload for {term!r}")
        for entry in images[:1]:
            if isinstance(entry, dict) and entry.get('imageUrl'):
                return str(entry['imageUrl'])
        return None

    def resolve(self, name: str, generic_name: Optional[str] = None) -> ImageResult:
        if not self.api_url:
            logging.debug("Drug image lookups disabled; DRUG_IMAGE_API_URL is not set")
            return ImageResult.not_found()
        for term in candidate_terms(name, generic_name):
            try:
                url = self.query(term)
            except ImageLookupError as e:
                logging.warning(f"Drug image lookup failed: {str(e)}")
                continue
            if url:
                return ImageResult.found(url=url, term=term)
        return ImageResult.not_found()


def get_resolver() -> DrugImageResolver:
    return DrugImageResolver()


def resolve_all(
    medications: Sequence[Medication],
    resolver: Optional[DrugImageResolver] = None,
    max_workers: int = 4,
) -> Dict[int, ImageResult]:
    """Resolve every medication independently; each result lands in its own index."""
    resolver = resolver or DrugImageResolver()
    results: Dict[int, ImageResult] = {}
    if not medications:
        return results
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(medications)))) as ex:
        futures = {
            ex.submit(resolver.resolve, med.name, med.generic_name): idx
            for idx, med in enumerate(medications)
        }
        for fut in as_completed(futures):
            idx = futures[fut]
            try:
                results[idx] = fut.result()
            except Exception as e:
                logging.warning(f"Drug image task {idx} failed: {str(e)}")
                results[idx] = ImageResult.not_found()
    return results
