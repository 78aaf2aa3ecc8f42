"""
Data contracts for the pipeline and the API.

Rationale:
- Request/response values that only live inside one run are frozen dataclasses.
- The validated chart model and the API response are pydantic models so the
  frontend knows exactly what to expect.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer

# Row of TabularData: column name -> str / number / None.
Row = Dict[str, Any]

KNOWN_CHART_TYPES = ("bar", "line", "pie")
DEFAULT_CHART_TITLE = "Chart"
DEFAULT_CHART_TYPE = "bar"
FALLBACK_COLOR = "#4ea1ff"


@dataclass(frozen=True)
class Message:
    role: str  # "system" | "user"
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ProviderRequest:
    provider: str
    messages: Tuple[Message, ...]

    def system_prompt(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == "system")

    def user_prompt(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == "user")


@dataclass(frozen=True)
class RawProviderResponse:
    text: str
    ok: bool
    status_code: Optional[int] = None


class ChartSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = DEFAULT_CHART_TITLE
    type: str = DEFAULT_CHART_TYPE
    labels: List[str] = Field(default_factory=list)
    values: List[float] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)

    @field_serializer("values")
    def _serialize_values(self, values: List[float], info):
        # JSON has no NaN; keep the slot as null.
        if info.mode_is_json():
            return [v if math.isfinite(v) else None for v in values]
        return values

    @property
    def is_known_type(self) -> bool:
        return self.type in KNOWN_CHART_TYPES

    def point_colors(self, fallback: str = FALLBACK_COLOR) -> List[str]:
        """One color per value; a single fallback color when `colors` can't cover every point."""
        if self.colors and len(self.colors) >= len(self.values):
            return list(self.colors[: len(self.values)])
        return [fallback] * len(self.values)


class AnalysisPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    analysis: str = ""
    charts: List[ChartSpec] = Field(default_factory=list)


class AnalysisResponse(BaseModel):
    state: str
    provider: Optional[str] = None
    analysis: Optional[str] = None
    charts: List[ChartSpec] = Field(default_factory=list)
    figures: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    raw_text: Optional[str] = None


class UploadResponse(BaseModel):
    filename: Optional[str] = None
    rows: int
    columns: List[str]


class SessionResponse(BaseModel):
    session_id: str
    rows: int
    columns: List[str]
    generation: int
    last: Optional[AnalysisResponse] = None


class ProxyRequest(BaseModel):
    messages: List[Dict[str, Any]]
