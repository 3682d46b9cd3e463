from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

FieldType = Literal["string", "number", "boolean", "array"]


class FieldSpec(BaseModel):
    type: FieldType = "string"
    description: Optional[str] = None


class Schema(BaseModel):
    """Ordered field schema. Insertion order of `properties` is the export column order."""

    type: str = "object"
    properties: Dict[str, FieldSpec] = Field(default_factory=dict)

    def field_names(self) -> List[str]:
        return list(self.properties.keys())

    def add(self, name: str, type_: FieldType, description: Optional[str] = None) -> bool:
        """Add a field unless it already exists. Returns True when added."""
        if name in self.properties:
            return False
        self.properties[name] = FieldSpec(type=type_, description=description)
        return True


class Strategy(str, Enum):
    BULK = "bulk"
    BULK_WITH_FALLBACK = "bulk_with_fallback"


@dataclass
class PageResult:
    json: Optional[Dict[str, Any]] = None
    markdown: Optional[str] = None
    html: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    url: Optional[str] = None
    links: List[str] = field(default_factory=list)
    screenshot: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], url: Optional[str] = None) -> "PageResult":
        """Build from a fetcher JSON payload (camelCase keys, `extract` accepted for `json`)."""
        data = payload.get("json") or payload.get("extract")
        metadata = payload.get("metadata") or {}
        return cls(
            json=data if isinstance(data, dict) else None,
            markdown=payload.get("markdown"),
            html=payload.get("html"),
            metadata=dict(metadata),
            url=payload.get("url") or url or metadata.get("sourceURL"),
            links=list(payload.get("links") or []),
            screenshot=payload.get("screenshot"),
        )

    @property
    def source_url(self) -> str:
        return str(self.metadata.get("sourceURL") or self.url or "")


@dataclass
class SampleResult:
    success: bool
    markdown: Optional[str] = None
    html: Optional[str] = None
    error: Optional[str] = None


@dataclass
class MapResult:
    success: bool
    urls: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class BatchResult:
    success: bool
    data: List[PageResult] = field(default_factory=list)
    credits_used: Optional[int] = None
    error: Optional[str] = None


@dataclass
class ScrapeOptions:
    formats: List[str] = field(default_factory=lambda: ["markdown"])
    only_main_content: bool = True
    timeout: int = 60000
    max_age: int = 0
    json_schema: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "formats": list(self.formats),
            "onlyMainContent": self.only_main_content,
            "timeout": self.timeout,
            "maxAge": self.max_age,
        }
        if self.json_schema is not None:
            payload["jsonOptions"] = {"schema": self.json_schema}
        return payload


@dataclass
class CrawlOptions:
    include_raw: bool = False
    max_age: int = 0
    auto_infer: bool = False
    # overall budget in seconds; None means unbounded
    timeout: Optional[float] = None
    page_timeout: int = 60000
    sample_timeout: int = 30000
    workers: int = 1


@dataclass(frozen=True)
class CrawlResult:
    records: Tuple[Dict[str, Any], ...]
    total_requested: int
    total_completed: int
    credits_used: int
    strategy_used: Strategy
    schema: Optional[Schema] = None
    inferred: bool = False
    raw: Optional[Tuple[Dict[str, Any], ...]] = None
    skipped: Tuple[str, ...] = ()

    def to_response(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "success": True,
            "data": list(self.records),
            "totalPages": self.total_requested,
            "completed": self.total_completed,
            "strategy": self.strategy_used.value,
            "creditsUsed": self.credits_used,
        }
        if self.inferred and self.schema is not None:
            response["inferredSchema"] = self.schema.model_dump(exclude_none=True)
        if self.raw is not None:
            response["rawData"] = list(self.raw)
        return response
