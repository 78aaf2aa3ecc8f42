"""
Map an untrusted parsed JSON value onto AnalysisPayload.

Permissive on purpose: every field has a default and nothing here raises, so a
partly malformed answer still yields whatever charts it does contain. Unknown
chart types pass through untouched; the renderer decides what to do with them.
"""

import math
from typing import Any, List, Mapping

from .schemas import (
    AnalysisPayload,
    ChartSpec,
    DEFAULT_CHART_TITLE,
    DEFAULT_CHART_TYPE,
)

_SEQUENCE_TYPES = (list, tuple)


def _coerce_num(v: Any) -> float:
    """Numeric cast that keeps the slot: anything non-numeric becomes NaN."""
    if isinstance(v, bool):
        return math.nan
    if isinstance(v, (int, float)):
        try:
            return float(v)
        except OverflowError:
            # Integer beyond float range: keep the sign.
            return math.inf if v > 0 else -math.inf
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            return math.nan
    return math.nan


def _as_list(v: Any) -> List[Any]:
    return list(v) if isinstance(v, _SEQUENCE_TYPES) else []


def _label(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def _non_empty_str(v: Any, default: str) -> str:
    if isinstance(v, str) and v.strip():
        return v
    return default


def validate_chart(raw: Any) -> ChartSpec:
    c: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
    return ChartSpec(
        title=_non_empty_str(c.get("title"), DEFAULT_CHART_TITLE),
        type=_non_empty_str(c.get("type"), DEFAULT_CHART_TYPE),
        labels=[_label(x) for x in _as_list(c.get("labels"))],
        values=[_coerce_num(x) for x in _as_list(c.get("values"))],
        colors=[x for x in _as_list(c.get("colors")) if isinstance(x, str)],
    )


def validate_payload(obj: Any) -> AnalysisPayload:
    data: Mapping[str, Any] = obj if isinstance(obj, Mapping) else {}
    analysis = data.get("analysis")
    return AnalysisPayload(
        analysis=analysis if isinstance(analysis, str) else "",
        charts=[validate_chart(c) for c in _as_list(data.get("charts"))],
    )
