"""
DETERMINISTICALLY convert a ChartSpec into a Plotly figure dict.

No LLM involvement and no widgets: the frontend hands the dict straight to
Plotly. Tolerates what the validator lets through:
- labels/values of different lengths (traces use the shorter length)
- empty or short colors (one fallback color for every point)
- NaN values (sent as null so Plotly leaves a gap)
- unknown chart types (rendered as bar)
"""

import logging
import math
from typing import Any, Dict, List, Optional

from .schemas import ChartSpec, FALLBACK_COLOR

logger = logging.getLogger(__name__)


def _finite_or_none(v: float) -> Optional[float]:
    return v if isinstance(v, (int, float)) and math.isfinite(v) else None


def chart_to_plotly(chart: ChartSpec, fallback_color: str = FALLBACK_COLOR) -> Dict[str, Any]:
    n = min(len(chart.labels), len(chart.values))
    if len(chart.labels) != len(chart.values):
        logger.debug(
            "plotly.length_mismatch title=%s labels=%d values=%d",
            chart.title,
            len(chart.labels),
            len(chart.values),
        )

    labels = list(chart.labels[:n])
    values = [_finite_or_none(v) for v in chart.values[:n]]
    colors = chart.point_colors(fallback_color)[:n]

    layout: Dict[str, Any] = {"title": {"text": chart.title}}

    if chart.type == "pie":
        trace: Dict[str, Any] = {
            "type": "pie",
            "labels": labels,
            "values": values,
            "marker": {"colors": colors},
        }
    elif chart.type == "line":
        trace = {
            "type": "scatter",
            "mode": "lines+markers",
            "name": chart.title,
            "x": labels,
            "y": values,
            "line": {"color": colors[0] if colors else fallback_color, "width": 2},
            "marker": {"color": colors},
        }
    else:
        trace = {
            "type": "bar",
            "name": chart.title,
            "x": labels,
            "y": values,
            "marker": {"color": colors, "line": {"color": colors, "width": 2}},
        }

    if chart.type != "pie":
        layout["xaxis"] = {"automargin": True}
        layout["yaxis"] = {"automargin": True}

    return {"data": [trace], "layout": layout}


def charts_to_plotly(charts: List[ChartSpec]) -> List[Dict[str, Any]]:
    return [chart_to_plotly(c) for c in charts]
