"""
Fill AI-described tables with locally computed data.
"""

import logging
from typing import Any, Iterable, List, Mapping, Sequence

from .schemas import TableKind, TableSpec
from .stats import compute_frequency, compute_numeric_stats

logger = logging.getLogger(__name__)


def _top_n_note(spec: TableSpec) -> str:
    n = spec.n_value
    if isinstance(n, float) and n.is_integer():
        n = int(n)
    columns = ",".join(spec.columns or []) or "(no columns)"
    group_by = spec.group_by_column or "(no group-by column)"
    return (
        f"Top {n if n is not None else 'N'} values for {columns} grouped by {group_by} "
        "is not implemented yet."
    )


def materialize_table(spec: TableSpec, records: Sequence[Mapping[str, Any]]) -> TableSpec:
    """Return a copy of ``spec`` with ``data`` populated for its kind.

    Unknown kinds, and known kinds missing their parameters, come back with
    ``data`` unset; renderers show those as "no data available".
    """
    kind = spec.kind
    data = None
    if kind is TableKind.SUMMARY_STATISTICS and spec.columns:
        stats = compute_numeric_stats(records, spec.columns)
        data = {col: s.to_dict() for col, s in stats.items()}
    elif kind is TableKind.FREQUENCY_DISTRIBUTION and spec.column:
        data = compute_frequency(records, [spec.column])
    elif kind is TableKind.TOP_N_VALUES:
        data = [{"note": _top_n_note(spec)}]
    else:
        logger.warning("tables.no_data title=%r type=%s", spec.title, spec.type)
    return spec.model_copy(update={"data": data}, deep=True)


def materialize_tables(specs: Iterable[TableSpec], records: Sequence[Mapping[str, Any]]) -> List[TableSpec]:
    return [materialize_table(spec, records) for spec in specs]
