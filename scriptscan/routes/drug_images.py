from fastapi import APIRouter, Depends, Query
from typing import Optional

from scriptscan.schemas.drug_image import DrugImageOut
from scriptscan.services.drug_image_service import DrugImageResolver, fallback_search_url, get_resolver

router = APIRouter()


@router.get("", response_model=DrugImageOut)
def drug_image(
    name: str = Query(..., min_length=1),
    generic_name: Optional[str] = Query(None, alias="genericName"),
    resolver: DrugImageResolver = Depends(get_resolver),
):
    result = resolver.resolve(name, generic_name)
    return DrugImageOut(
        status=result.status,
        url=result.url,
        term=result.term,
        fallback_url=fallback_search_url(name),
    )
