"""
Descriptive statistics over uploaded records.

Both entry points look only at the first STATS_SAMPLE_LIMIT records (arrival
order, not random). On large datasets the numbers are therefore an
approximation of the full dataset; callers that display them should say so.
"""

import math
import os
import re
from decimal import ROUND_HALF_UP, Context, Decimal
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

STATS_SAMPLE_LIMIT = int(os.getenv("STATS_SAMPLE_LIMIT", "1000"))

_CENTS = Decimal("0.01")
# Wide enough for every finite float at two decimals
_ROUNDING_CONTEXT = Context(prec=400, rounding=ROUND_HALF_UP)

# Plain ASCII decimal or scientific notation; no digit separators
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


@dataclass(frozen=True)
class ColumnStatistics:
    count: int
    mean: float
    median: float
    min: float
    max: float
    std_dev: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mean": self.mean,
            "median": self.median,
            "min": self.min,
            "max": self.max,
            "stdDev": self.std_dev,
            "count": self.count,
        }


def to_number(value: Any) -> Optional[float]:
    """Convert a raw cell to a finite float, or None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not _NUMBER_RE.fullmatch(text):
            return None
        f = float(text)
    else:
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def sample_records(records: Sequence[Mapping[str, Any]], limit: Optional[int] = None) -> Sequence[Mapping[str, Any]]:
    limit = STATS_SAMPLE_LIMIT if limit is None else limit
    return records[:limit]


def _round2(x: float) -> float:
    # Half-up on the exact binary value, so 0.125 -> 0.13 but 1.005 -> 1.0
    return float(Decimal(float(x)).quantize(_CENTS, context=_ROUNDING_CONTEXT))


def compute_numeric_stats(
    records: Sequence[Mapping[str, Any]],
    columns: Iterable[str],
) -> Dict[str, ColumnStatistics]:
    """Mean/median/min/max/population std-dev per column.

    Columns with no convertible value are left out of the result entirely.
    """
    sampled = sample_records(records)
    stats: Dict[str, ColumnStatistics] = {}
    for col in columns:
        values = [v for v in (to_number(row.get(col)) for row in sampled) if v is not None]
        if not values:
            continue
        arr = np.asarray(values, dtype=float)
        stats[col] = ColumnStatistics(
            count=len(values),
            mean=_round2(arr.mean()),
            median=_round2(np.median(arr)),
            min=_round2(arr.min()),
            max=_round2(arr.max()),
            std_dev=_round2(arr.std()),
        )
    return stats


def _frequency_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value if isinstance(value, str) else str(value)


def compute_frequency(
    records: Sequence[Mapping[str, Any]],
    columns: Iterable[str],
) -> Dict[str, Dict[str, int]]:
    """Occurrence count of each distinct value, skipping absent, null and empty cells."""
    sampled = sample_records(records)
    distributions: Dict[str, Dict[str, int]] = {}
    for col in columns:
        counts: Dict[str, int] = {}
        for row in sampled:
            value = row.get(col)
            if value is None or value == "":
                continue
            key = _frequency_key(value)
            counts[key] = counts.get(key, 0) + 1
        distributions[col] = counts
    return distributions


def numeric_columns(record: Mapping[str, Any], columns: Iterable[str]) -> List[str]:
    """Columns whose value in ``record`` converts to a number, in ``columns`` order."""
    return [c for c in columns if to_number(record.get(c)) is not None]
