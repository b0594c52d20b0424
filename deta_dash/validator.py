"""
Repair pass over AI-suggested chart specs.

The chart producer is a non-deterministic model that may invent column names.
Each chart is checked against the dataset's real columns and is kept as-is,
trimmed, rebuilt from numeric columns, or dropped. Nothing here raises for a
bad column reference.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .schemas import AxisBinding, ChartSpec, ChartType, SeriesBinding, SeriesRole
from .stats import numeric_columns

logger = logging.getLogger(__name__)

FALLBACK_COLOR = "#8884d8"
MAX_FALLBACK_SERIES = 2

_ROLE_BY_CHART_TYPE = {
    ChartType.BAR: SeriesRole.BAR,
    ChartType.AREA: SeriesRole.AREA,
    ChartType.LINE: SeriesRole.LINE,
}


def _clean_axis(axis: Optional[AxisBinding], known: set) -> Optional[AxisBinding]:
    """An axis bound to an unknown column is treated as absent."""
    if axis is None or not axis.data_key:
        return axis
    return axis if axis.data_key in known else None


def _fallback_series(chart: ChartSpec, numeric: List[str]) -> List[SeriesBinding]:
    color = chart.colors[0] if chart.colors else FALLBACK_COLOR
    role = _ROLE_BY_CHART_TYPE.get(chart.chart_type, SeriesRole.LINE)
    return [
        SeriesBinding(data_key=col, type=role, stroke=color, fill=color, active_dot=True)
        for col in numeric[:MAX_FALLBACK_SERIES]
    ]


def validate_chart(
    chart: ChartSpec,
    known_columns: Sequence[str],
    representative_record: Mapping[str, Any],
) -> Optional[ChartSpec]:
    """Return the repaired chart, or None when it cannot be salvaged."""
    known = set(known_columns)
    valid_series = [s for s in chart.series if s.data_key in known]
    x_axis = _clean_axis(chart.x_axis, known)
    y_axis = _clean_axis(chart.y_axis, known)
    update = {}
    if x_axis is not chart.x_axis:
        update["x_axis"] = x_axis
    if y_axis is not chart.y_axis:
        update["y_axis"] = y_axis

    if not valid_series and chart.series:
        numeric = numeric_columns(representative_record, known_columns)
        if not numeric:
            logger.warning("validator.chart_dropped title=%r reason=no_numeric_columns", chart.title)
            return None
        update["series"] = _fallback_series(chart, numeric)
        if x_axis is None or not x_axis.data_key:
            update["x_axis"] = AxisBinding(data_key=numeric[0], label=numeric[0])
        logger.warning(
            "validator.chart_rebuilt title=%r series=%s",
            chart.title,
            [s.data_key for s in update["series"]],
        )
    elif len(valid_series) != len(chart.series):
        update["series"] = valid_series
        logger.warning(
            "validator.chart_trimmed title=%r kept=%d dropped=%d",
            chart.title,
            len(valid_series),
            len(chart.series) - len(valid_series),
        )

    if not update:
        return chart
    return chart.model_copy(update=update, deep=True)


def validate_charts(
    charts: Iterable[ChartSpec],
    known_columns: Sequence[str],
    representative_record: Mapping[str, Any],
) -> List[ChartSpec]:
    """Validate every chart; unsalvageable charts are left out of the result."""
    out = []
    for chart in charts:
        fixed = validate_chart(chart, known_columns, representative_record)
        if fixed is not None:
            out.append(fixed)
    return out
