from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.tools.web_utils import normalize_whitespace


# --- Requests ---


class SourceOption(BaseModel):
    type: Literal["web", "images", "news"]


class ScrapeOptions(BaseModel):
    # Forwarded to the fetch backend, which expects camelCase keys.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    formats: list[str] = Field(default_factory=lambda: ["markdown"])
    only_main_content: bool = True
    wait_for: int = Field(default=0, ge=0, le=60000)
    headers: dict[str, str] | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    limit: int = Field(default=5, ge=1, le=100)
    sources: list[SourceOption] = Field(default_factory=lambda: [SourceOption(type="web")])
    categories: list[Literal["github", "research", "pdf"]] = Field(default_factory=list)
    tbs: str | None = None
    filter: str | None = None
    lang: str | None = "en"
    country: str | None = "us"
    location: str | None = None
    timeout: int = Field(default=60000, ge=1000, le=300000)  # per fetch job, ms
    scrape_options: ScrapeOptions = Field(default_factory=ScrapeOptions)
    origin: str = "api"
    integration: str | None = None
    async_scraping: bool = False

    @field_validator("query")
    @classmethod
    def normalize_query(cls, value: str) -> str:
        normalized = normalize_whitespace(value)
        if not normalized:
            raise ValueError("query must not be blank")
        return normalized

    @field_validator("sources", mode="before")
    @classmethod
    def coerce_sources(cls, value: Any) -> Any:
        # Accept bare strings ("web") as well as {"type": "web"} objects.
        if isinstance(value, list):
            return [{"type": entry} if isinstance(entry, str) else entry for entry in value]
        return value

    @field_validator("sources")
    @classmethod
    def require_sources(cls, value: list[SourceOption]) -> list[SourceOption]:
        if not value:
            raise ValueError("at least one source is required")
        return value

    @property
    def source_types(self) -> list[str]:
        return list(dict.fromkeys(source.type for source in self.sources))


# --- Responses ---


class SearchResponse(BaseModel):
    success: bool = True
    data: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    credits_used: int = 0
    scrape_ids: dict[str, list[str]] | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str | None = None
    details: list[dict[str, Any]] | None = None
