from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Literal, Optional


class ImageResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["found", "not_found"]
    url: Optional[str] = None
    term: Optional[str] = Field(None, description="Candidate term that produced the match")

    @classmethod
    def found(cls, url: str, term: str) -> "ImageResult":
        return cls(status="found", url=url, term=term)

    @classmethod
    def not_found(cls) -> "ImageResult":
        return cls(status="not_found")

    @property
    def is_found(self) -> bool:
        return self.status == "found"


class DrugImageOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: Literal["found", "not_found"]
    url: Optional[str] = None
    term: Optional[str] = None
    fallback_url: str

