import pytest
from fastapi.testclient import TestClient

from deta_dash import ingest as ingest_mod
from deta_dash import main as main_mod
from deta_dash.errors import PersistenceError, UpstreamParseError, UpstreamResponseError
from deta_dash.persistence import DashboardStore
from deta_dash.schemas import ChartSpec, DashboardConfig, MetricSpec
from deta_dash.tables import materialize_tables

CSV = ("data.csv", b"name,score\nA,10\nB,20\nC,30\n", "text/csv")


def _fake_analyze(dataset):
    chart = ChartSpec.model_validate(
        {"chartType": "BarChart", "dataLinesOrBarsOrAreas": [{"type": "bar", "dataKey": "score"}], "title": "Scores"}
    )
    return DashboardConfig(
        charts=[chart],
        tables=materialize_tables([], dataset.records),
        metrics=[MetricSpec(label="Rows", value=str(dataset.row_count))],
    )


@pytest.fixture
def store(monkeypatch, fake_collection):
    s = DashboardStore(fake_collection)
    monkeypatch.setattr(main_mod, "get_store", lambda: s)
    return s


@pytest.fixture
def client(store):
    return TestClient(main_mod.app)


@pytest.fixture
def session_id(client):
    resp = client.post("/session")
    assert resp.status_code == 200
    assert resp.json()["anonymous"] is True
    return resp.json()["session_id"]


def test_health(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_analyze_requires_session(client):
    resp = client.post("/analyze", files={"file": CSV})
    assert resp.status_code == 401


def test_analyze_persists_and_lists(monkeypatch, client, store, session_id):
    monkeypatch.setattr(main_mod, "analyze", _fake_analyze)
    headers = {"x-session-id": session_id}

    resp = client.post("/analyze", files={"file": CSV}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["dataset_name"] == "data.csv"
    assert body["columns"] == ["name", "score"]
    assert body["row_count"] == 3
    assert body["superseded"] is False
    assert body["dashboard"]["charts"][0]["dataLinesOrBarsOrAreas"][0]["dataKey"] == "score"
    assert body["dashboard"]["metrics"] == [{"label": "Rows", "value": "3", "unit": None}]
    dashboard_id = body["dashboard_id"]
    assert dashboard_id

    listed = client.get("/dashboards", headers=headers).json()
    assert [d["id"] for d in listed] == [dashboard_id]
    assert listed[0]["datasetMetadata"] == {"name": "data.csv", "keys": ["name", "score"]}

    one = client.get(f"/dashboards/{dashboard_id}", headers=headers)
    assert one.status_code == 200
    assert one.json()["dashboardConfig"]["charts"][0]["title"] == "Scores"

    current = client.get("/dashboards/current", headers=headers)
    assert current.status_code == 200
    assert current.json()["metrics"][0]["value"] == "3"


def test_other_users_cannot_read_dashboard(monkeypatch, client, session_id):
    monkeypatch.setattr(main_mod, "analyze", _fake_analyze)
    dashboard_id = client.post("/analyze", files={"file": CSV}, headers={"x-session-id": session_id}).json()[
        "dashboard_id"
    ]

    other = client.post("/session", data={"token": "someone-else"}).json()
    assert other["anonymous"] is False
    resp = client.get(f"/dashboards/{dashboard_id}", headers={"x-session-id": other["session_id"]})
    assert resp.status_code == 404


@pytest.mark.parametrize(
    "upload, status",
    [
        (("doc.pdf", b"%PDF-1.4", "application/pdf"), 415),
        (("empty.csv", b"a,b\n", "text/csv"), 400),
        (("bad.json", b'{"not": "an array"}', "application/json"), 400),
        (("broken.csv", b'a,b\n1,"open\n', "text/csv"), 400),
    ],
)
def test_ingest_errors_map_to_status(monkeypatch, client, session_id, upload, status):
    monkeypatch.setattr(main_mod, "analyze", _fake_analyze)
    resp = client.post("/analyze", files={"file": upload}, headers={"x-session-id": session_id})
    assert resp.status_code == status
    assert resp.json()["detail"]


@pytest.mark.parametrize("error", [UpstreamResponseError("bad status"), UpstreamParseError("bad json")])
def test_upstream_errors_are_bad_gateway(monkeypatch, client, store, session_id, error):
    def failing_analyze(dataset):
        raise error

    monkeypatch.setattr(main_mod, "analyze", failing_analyze)
    resp = client.post("/analyze", files={"file": CSV}, headers={"x-session-id": session_id})

    assert resp.status_code == 502
    assert store.list_for_user("anyone") == []


def test_persistence_failure_is_service_unavailable(monkeypatch, client, session_id):
    class _Broken:
        def save(self, *args, **kwargs):
            raise PersistenceError("Failed to save dashboard: timeout")

    monkeypatch.setattr(main_mod, "analyze", _fake_analyze)
    monkeypatch.setattr(main_mod, "get_store", lambda: _Broken())

    resp = client.post("/analyze", files={"file": CSV}, headers={"x-session-id": session_id})
    assert resp.status_code == 503
    assert "Failed to save dashboard" in resp.json()["detail"]


def test_superseded_result_is_returned_but_not_saved(monkeypatch, client, store, session_id):
    session = main_mod._SESSIONS.get(session_id)

    def slow_analyze(dataset):
        # a newer upload starts while this one is still waiting on the model
        session.begin_analysis()
        return _fake_analyze(dataset)

    monkeypatch.setattr(main_mod, "analyze", slow_analyze)
    resp = client.post("/analyze", files={"file": CSV}, headers={"x-session-id": session_id})

    assert resp.status_code == 200
    assert resp.json()["superseded"] is True
    assert resp.json()["dashboard_id"] is None
    assert store.list_for_user(session.user_id) == []
    assert session.current_dashboard is None


def test_sign_out_invalidates_session(client, session_id):
    headers = {"x-session-id": session_id}
    assert client.delete("/session", headers=headers).status_code == 200
    assert client.get("/dashboards", headers=headers).status_code == 401


def test_newer_analysis_finishing_during_save_keeps_its_id(monkeypatch, client, store, session_id):
    session = main_mod._SESSIONS.get(session_id)
    newer_dashboard = DashboardConfig(metrics=[MetricSpec(label="newer", value="1")])

    class _RacingStore:
        def save(self, user_id, dashboard, dataset_name, columns):
            seq = session.begin_analysis()
            session.complete_analysis(seq, newer_dashboard)
            session.record_saved(seq, "newer-id")
            return store.save(user_id, dashboard, dataset_name, columns)

    monkeypatch.setattr(main_mod, "analyze", _fake_analyze)
    monkeypatch.setattr(main_mod, "get_store", lambda: _RacingStore())
    resp = client.post("/analyze", files={"file": CSV}, headers={"x-session-id": session_id})

    assert resp.status_code == 200
    assert resp.json()["superseded"] is True
    assert resp.json()["dashboard_id"]
    assert session.current_dashboard is newer_dashboard
    assert session.current_dashboard_id == "newer-id"


def test_oversized_upload_is_rejected(monkeypatch, client, session_id):
    monkeypatch.setattr(ingest_mod, "MAX_FILE_SIZE_MB", 1)
    monkeypatch.setattr(main_mod, "analyze", _fake_analyze)
    big = ("big.csv", b"a\n" + b"1\n" * (600 * 1024), "text/csv")

    resp = client.post("/analyze", files={"file": big}, headers={"x-session-id": session_id})
    assert resp.status_code == 400
    assert "1 MB" in resp.json()["detail"]
