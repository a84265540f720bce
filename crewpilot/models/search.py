"""Memory search models."""

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SearchIndexEntry(BaseModel):
    """Keyword summary of one indexed document."""

    model_config = ConfigDict(populate_by_name=True)

    relative_path: str = Field(
        ...,
        alias="file",
        description="Path relative to .team-config/",
    )
    keywords: list[str] = Field(default_factory=list)
    line_count: int = Field(default=0, alias="lineCount", ge=0)


class MemoryIndex(BaseModel):
    """The memory-index.json document, rebuilt wholesale."""

    model_config = ConfigDict(populate_by_name=True)

    last_updated: datetime = Field(..., alias="lastUpdated")
    entries: list[SearchIndexEntry] = Field(default_factory=list)


@dataclass
class SearchMatch:
    """A scored line inside a document."""

    line_number: int  # 1-based
    context_text: str  # Match line plus surrounding context lines
    score: int


@dataclass
class SearchResult:
    """All surviving matches for one document."""

    document: str  # Absolute path
    aggregate_score: int  # Sum of top-3 deduplicated match scores
    matches: list[SearchMatch] = field(default_factory=list)


@dataclass
class QueryValidation:
    """Outcome of validating a raw query string."""

    valid: bool
    error: str | None = None
    normalized: str | None = None


@dataclass
class SearchResponse:
    """Result of a search call.

    When the query is rejected, ``error`` is set and nothing was read from
    disk. ``total_results`` counts documents before the limit was applied.
    """

    query: str
    results: list[SearchResult] = field(default_factory=list)
    error: str | None = None
    total_results: int = 0
    documents_searched: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def total_matches(self) -> int:
        return sum(len(r.matches) for r in self.results)
