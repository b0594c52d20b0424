from deta_dash.schemas import TableSpec
from deta_dash.tables import materialize_table, materialize_tables

RECORDS = [
    {"city": "NY", "sales": "10"},
    {"city": "LA", "sales": "20"},
    {"city": "NY", "sales": "30"},
    {"city": "", "sales": "n/a"},
]


def test_summary_statistics_table():
    spec = TableSpec.model_validate({"title": "Sales", "type": "summary_statistics", "columns": ["sales", "city"]})
    out = materialize_table(spec, RECORDS)

    assert out.data == {
        "sales": {"mean": 20.0, "median": 20.0, "min": 10.0, "max": 30.0, "stdDev": 8.16, "count": 3}
    }
    assert spec.data is None


def test_frequency_distribution_table():
    spec = TableSpec.model_validate({"title": "Cities", "type": "frequency_distribution", "column": "city"})
    out = materialize_table(spec, RECORDS)
    assert out.data == {"city": {"NY": 2, "LA": 1}}


def test_top_n_values_is_a_single_note():
    spec = TableSpec.model_validate(
        {
            "title": "Top cities",
            "type": "top_n_values",
            "columns": ["sales"],
            "groupByColumn": "city",
            "nValue": 5,
        }
    )
    out = materialize_table(spec, RECORDS)

    assert isinstance(out.data, list)
    assert len(out.data) == 1
    note = out.data[0]["note"]
    assert "not implemented" in note
    assert "Top 5" in note
    assert "sales" in note
    assert "city" in note


def test_top_n_values_without_parameters_still_has_a_note():
    spec = TableSpec.model_validate({"title": "Top", "type": "top_n_values"})
    out = materialize_table(spec, [])
    assert len(out.data) == 1
    assert "not implemented" in out.data[0]["note"]


def test_unknown_kind_has_no_data():
    spec = TableSpec.model_validate({"title": "Pivot", "type": "pivot_table", "columns": ["sales"]})
    assert materialize_table(spec, RECORDS).data is None


def test_known_kind_missing_parameters_has_no_data():
    spec = TableSpec.model_validate({"title": "Cities", "type": "frequency_distribution"})
    assert materialize_table(spec, RECORDS).data is None


def test_materialize_tables_keeps_order():
    specs = [
        TableSpec.model_validate({"title": "a", "type": "frequency_distribution", "column": "city"}),
        TableSpec.model_validate({"title": "b", "type": "summary_statistics", "columns": ["sales"]}),
    ]
    out = materialize_tables(specs, RECORDS)
    assert [t.title for t in out] == ["a", "b"]
    assert all(t.data for t in out)
