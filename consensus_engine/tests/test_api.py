"""
Acceptance tests: Consensus HTTP endpoints

Data is seeded by running the batch against the test database; the app's
get_db dependency is pointed at the same session.
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from consensus_engine.database import get_db
from consensus_engine.main import app
from consensus_engine.orchestrator.consensus_batch import run_consensus_batch
from consensus_engine.repositories import financials_repo

DAY1 = date(2025, 3, 1)
DAY2 = date(2025, 3, 2)


def _fact(company_id, ticker, year, eps, per):
    return {
        "company_id": company_id,
        "ticker": ticker,
        "year": year,
        "eps": eps,
        "per": per,
        "data_source": "fnguide",
        "scrape_date": DAY1,
    }


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def seeded_client(db, client):
    financials_repo.upsert_facts(db, [
        _fact(1, "005930", 2024, 100, 10),
        _fact(1, "005930", 2025, 150, 8),
        _fact(1, "005930", 2026, 180, 8),
        _fact(2, "000660", 2024, -50, 15),
        _fact(2, "000660", 2025, 30, 15),
        _fact(3, "035720", 2024, 100, None),
        _fact(3, "035720", 2025, 120, 10),
    ])
    run_consensus_batch(db, snapshot_date=DAY1, current_year=2025)
    return client


@pytest.fixture
def two_day_client(db, seeded_client):
    financials_repo.upsert_facts(db, [
        {**_fact(1, "005930", 2025, 160, 8), "scrape_date": DAY2, "company_name": "Samsung Electronics"},
    ])
    run_consensus_batch(db, snapshot_date=DAY2, current_year=2025)
    return seeded_client


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# /consensus/metrics
# ---------------------------------------------------------------------------

def test_metrics_defaults_to_latest_date_and_normal_rows(seeded_client):
    body = seeded_client.get("/consensus/metrics").json()

    assert body["pagination"] == {"total": 2, "page": 1, "limit": 50, "pages": 1}
    first, second = body["data"]
    assert first["snapshot_date"] == "2025-03-01"
    assert (first["ticker"], first["target_y1"], first["hgs_score"]) == ("005930", 2024, 50.0)
    assert "HEALTHY_DERATING" in first["signal_tags"]
    assert first["is_target_zone"] is True
    assert second["hgs_score"] == 20.0


def test_metrics_status_and_tag_filters(seeded_client):
    body = seeded_client.get("/consensus/metrics?status=TURNAROUND&status=ERROR").json()
    assert body["pagination"]["total"] == 2

    body = seeded_client.get(
        "/consensus/metrics", params={"status": ["NORMAL", "TURNAROUND"], "tags": "TURNAROUND"},
    ).json()
    assert [r["ticker"] for r in body["data"]] == ["000660"]


def test_metrics_range_and_quadrant_filters(seeded_client):
    body = seeded_client.get("/consensus/metrics", params={"min_hgs": 30}).json()
    assert [r["hgs_score"] for r in body["data"]] == [50.0]

    body = seeded_client.get("/consensus/metrics", params={"quad": "Q1_GROWTH_RERATING"}).json()
    assert [r["target_y1"] for r in body["data"]] == [2025]


def test_metrics_page_size_is_capped(seeded_client):
    body = seeded_client.get("/consensus/metrics", params={"limit": 500}).json()
    assert body["pagination"]["limit"] == 100


def test_metrics_rejects_unknown_quadrant(seeded_client):
    assert seeded_client.get("/consensus/metrics", params={"quad": "Q9"}).status_code == 422


def test_metrics_sort_by_column(seeded_client):
    body = seeded_client.get(
        "/consensus/metrics", params={"sort_by": "eps_growth_pct", "sort_order": "asc"},
    ).json()
    assert [r["eps_growth_pct"] for r in body["data"]] == [20.0, 50.0]


def test_metrics_rejects_unknown_sort(seeded_client):
    assert seeded_client.get("/consensus/metrics", params={"sort_by": "bogus"}).status_code == 422
    assert seeded_client.get("/consensus/metrics", params={"sort_by": "eps_growth"}).status_code == 422
    assert seeded_client.get("/consensus/metrics", params={"sort_order": "up"}).status_code == 422


def test_metrics_on_empty_store(client):
    body = client.get("/consensus/metrics").json()
    assert body["data"] == []
    assert body["pagination"]["total"] == 0


# ---------------------------------------------------------------------------
# /consensus/quadrant
# ---------------------------------------------------------------------------

def test_quadrant_points_and_counts(seeded_client):
    body = seeded_client.get("/consensus/quadrant").json()

    assert body["snapshot_date"] == "2025-03-01"
    assert body["stats"]["total"] == 2
    assert body["stats"]["by_quadrant"] == {
        "Q1_GROWTH_RERATING": 1,
        "Q2_GROWTH_DERATING": 1,
        "Q3_DECLINE_RERATING": 0,
        "Q4_DECLINE_DERATING": 0,
    }
    point = next(p for p in body["data"] if p["quad_position"] == "Q2_GROWTH_DERATING")
    assert (point["quad_x"], point["quad_y"]) == (50.0, -20.0)
    assert point["is_target_zone"] is True


# ---------------------------------------------------------------------------
# /consensus/company/{ticker}
# ---------------------------------------------------------------------------

def test_company_detail(seeded_client):
    body = seeded_client.get("/consensus/company/005930").json()

    assert body["ticker"] == "005930"
    assert body["latest_metric"]["target_y1"] == 2025
    assert set(body["changes"]) == {"daily", "weekly", "monthly", "trends"}
    assert body["changes"]["daily"] == {"fvb": None, "hgs": None, "rrs": None, "quad_shift": None}
    assert body["changes"]["trends"]["fvb"] is None
    assert [h["snapshot_date"] for h in body["historical"]] == ["2025-03-01"]


def test_company_detail_for_turnaround(seeded_client):
    body = seeded_client.get("/consensus/company/000660").json()
    assert body["latest_metric"]["calc_status"] == "TURNAROUND"
    assert body["latest_metric"]["signal_tags"] == ["TURNAROUND"]
    assert body["latest_metric"]["is_turnaround"] is True


def test_company_not_found(seeded_client):
    resp = seeded_client.get("/consensus/company/nope")
    assert resp.status_code == 404
    assert "NOPE" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# /consensus/ranking
# ---------------------------------------------------------------------------

def test_ranking_orders_by_priority(seeded_client):
    body = seeded_client.get("/consensus/ranking").json()

    ranked = [(r["ticker"], r["target_y1"], r["priority"]) for r in body["data"]]
    assert ranked == [
        ("005930", 2024, 120),
        ("005930", 2025, 20),
        ("000660", 2024, 0),
    ]


def test_ranking_limit(seeded_client):
    body = seeded_client.get("/consensus/ranking", params={"limit": 1}).json()
    assert len(body["data"]) == 1


# ---------------------------------------------------------------------------
# /consensus/trends
# ---------------------------------------------------------------------------

def test_trends_per_ticker_series_and_stats(two_day_client):
    body = two_day_client.get("/consensus/trends", params={
        "tickers": "005930, 000660",
        "end_date": "2025-03-02",
        "target_y1": 2024,
        "target_y2": 2025,
    }).json()

    assert body["date_range"] == {"start": "2025-01-31", "end": "2025-03-02", "days": 30}
    samsung, hynix = body["trends"]

    assert samsung["ticker"] == "005930"
    assert samsung["company_name"] == "Samsung Electronics"
    assert [p["snapshot_date"] for p in samsung["data"]] == ["2025-03-01", "2025-03-02"]
    assert [p["hgs_score"] for p in samsung["data"]] == [50.0, 60.0]
    assert samsung["stats"] == {
        "data_points": 2,
        "fvb_trend": "STABLE",        # +0.0645
        "hgs_trend": "IMPROVING",     # +10
        "latest_quad": "Q2_GROWTH_DERATING",
    }

    assert hynix["company_name"] == "000660"
    assert [p["calc_status"] for p in hynix["data"]] == ["TURNAROUND", "TURNAROUND"]
    assert hynix["stats"] == {"data_points": 0, "fvb_trend": None, "hgs_trend": None, "latest_quad": None}


def test_trends_need_two_points_for_a_direction(two_day_client):
    body = two_day_client.get("/consensus/trends", params={
        "tickers": "005930", "end_date": "2025-03-01", "target_y1": 2024,
    }).json()
    (samsung,) = body["trends"]
    assert samsung["stats"]["data_points"] == 1
    assert samsung["stats"]["fvb_trend"] is None
    assert samsung["stats"]["hgs_trend"] is None


def test_trends_skip_tickers_without_rows(two_day_client):
    body = two_day_client.get("/consensus/trends", params={
        "tickers": "999999,005930", "end_date": "2025-03-02",
    }).json()
    assert [t["ticker"] for t in body["trends"]] == ["005930"]


def test_trends_ticker_count_is_validated(client):
    assert client.get("/consensus/trends").status_code == 400
    assert client.get("/consensus/trends", params={"tickers": " , "}).status_code == 400
    many = ",".join(f"{n:06d}" for n in range(11))
    resp = client.get("/consensus/trends", params={"tickers": many})
    assert resp.status_code == 400
    assert "10" in resp.json()["detail"]


def test_trends_days_must_be_positive(client):
    assert client.get("/consensus/trends", params={"tickers": "005930", "days": 0}).status_code == 422


# ---------------------------------------------------------------------------
# /consensus/comparison
# ---------------------------------------------------------------------------

def test_comparison_against_previous_snapshot(two_day_client):
    body = two_day_client.get("/consensus/comparison", params={"ticker": "005930"}).json()

    # newest pair (2025/2026): eps 150 -> 160 for 2025 narrows growth to 12.5%
    assert body["current"]["target_y1"] == 2025
    assert body["current"]["snapshot_date"] == "2025-03-02"
    assert body["previous"]["snapshot_date"] == "2025-03-01"
    changes = body["changes"]
    assert changes["fvb_change"] == pytest.approx(-0.0645)
    assert changes["hgs_change"] == pytest.approx(-7.5)
    assert changes["rrs_change"] == pytest.approx(7.5)
    assert changes["eps_growth_change"] == pytest.approx(-7.5)
    assert changes["quad_changed"] is False
    assert changes["days_diff"] == 1
    assert body["interpretation"]["overall"] == "DOWNGRADED"
    assert body["interpretation"]["signals"] == [
        "Growth outlook worsened (HGS -7.5)",
        "Overheat risk rising (RRS +7.5)",
    ]


def test_comparison_for_a_given_year_pair(two_day_client):
    body = two_day_client.get("/consensus/comparison", params={
        "ticker": "005930", "target_y1": 2024, "target_y2": 2025,
    }).json()
    assert body["changes"]["hgs_change"] == pytest.approx(10.0)
    assert body["interpretation"]["overall"] == "UPGRADED"
    assert body["interpretation"]["summary"] == "Consensus revised up (2 positive signals)"


def test_comparison_without_history(seeded_client):
    resp = seeded_client.get("/consensus/comparison", params={"ticker": "005930"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["current"]["snapshot_date"] == "2025-03-01"
    assert body["previous"] is None
    assert body["changes"] is None
    assert body["interpretation"] is None


def test_comparison_compare_date_bounds_previous(two_day_client):
    body = two_day_client.get("/consensus/comparison", params={
        "ticker": "005930", "compare_date": "2025-02-28",
    }).json()
    assert body["previous"] is None


def test_comparison_errors(seeded_client):
    assert seeded_client.get("/consensus/comparison").status_code == 400
    # only TURNAROUND rows on file
    resp = seeded_client.get("/consensus/comparison", params={"ticker": "000660"})
    assert resp.status_code == 404
    assert "000660" in resp.json()["detail"]
