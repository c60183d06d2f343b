from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine, text
from werkzeug.security import generate_password_hash

from app import create_app
from services.errors import DataSourceError


SQLITE_QUERIES = {
    "METRICS_QUERY": "SELECT energyGenerated, currentPower, co2Saved, treesSaved FROM dashboard_metrics",
    "POWER_TREND_QUERY": "SELECT Date_Time, ACTIVE_POWER, POA FROM power_trend ORDER BY id",
    "ENERGY_BAR_QUERY": "SELECT TIME, energyGenerated FROM energy_bar ORDER BY id",
}

SCHEMA = [
    "CREATE TABLE dashboard_metrics (energyGenerated REAL, currentPower REAL, co2Saved REAL, treesSaved REAL)",
    "CREATE TABLE Users (id INTEGER PRIMARY KEY, username TEXT, password TEXT, full_name TEXT)",
    "CREATE TABLE power_trend (id INTEGER PRIMARY KEY, Date_Time TEXT, ACTIVE_POWER REAL, POA REAL)",
    "CREATE TABLE energy_bar (id INTEGER PRIMARY KEY, TIME TEXT, energyGenerated REAL)",
]


class FakeDataSource:
    """In-memory stand-in for SqlDataSource with switchable failures."""

    def __init__(
        self,
        metrics_rows: Optional[List[Dict[str, Any]]] = None,
        users: Optional[List[Dict[str, Any]]] = None,
        power_rows: Optional[List[Dict[str, Any]]] = None,
        energy_rows: Optional[List[Dict[str, Any]]] = None,
    ):
        self.metrics_rows = metrics_rows or []
        self.users = users or []
        self.power_rows = power_rows or []
        self.energy_rows = energy_rows or []
        self.fail = False
        self.calls = 0

    def _check(self):
        if self.fail:
            raise DataSourceError("connection refused")

    def fetch_dashboard_metrics(self):
        self.calls += 1
        self._check()
        return list(self.metrics_rows)

    def find_user(self, username):
        self._check()
        return next((dict(u) for u in self.users if u["username"] == username), None)

    def fetch_power_trend(self):
        self._check()
        return list(self.power_rows)

    def fetch_energy_bar(self):
        self._check()
        return list(self.energy_rows)


@pytest.fixture
def fake_source():
    return FakeDataSource(
        metrics_rows=[{"energyGenerated": 1500, "currentPower": 42, "co2Saved": 7.5, "treesSaved": 3}],
        users=[{"username": "alice", "password": generate_password_hash("s3cret"), "full_name": "Alice"}],
    )


@pytest.fixture
def sqlite_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'solar.db'}"
    engine = create_engine(url)
    with engine.begin() as conn:
        for stmt in SCHEMA:
            conn.execute(text(stmt))
        conn.execute(text(
            "INSERT INTO dashboard_metrics VALUES (1234.5, 87.0, 456.0, 21.0)"
        ))
        conn.execute(
            text("INSERT INTO Users (username, password, full_name) VALUES (:u, :p, :n)"),
            [
                {"u": "operator", "p": generate_password_hash("sunshine"), "n": "Site Operator"},
                {"u": "legacy", "p": "plaintext-pw", "n": "Legacy User"},
            ],
        )
        conn.execute(
            text("INSERT INTO power_trend (Date_Time, ACTIVE_POWER, POA) VALUES (:d, :a, :p)"),
            [
                {"d": "2024-05-01T14:32:00Z", "a": 120, "p": 300},
                {"d": "2024-05-01T14:47:00Z", "a": 95, "p": None},
                {"d": "not-a-date", "a": 80, "p": 210},
                {"d": "2024-05-01T15:02:00+02:00", "a": 0, "p": 150},
            ],
        )
        conn.execute(
            text("INSERT INTO energy_bar (TIME, energyGenerated) VALUES (:t, :e)"),
            [
                {"t": "08:00", "e": 12.5},
                {"t": "09:00", "e": None},
                {"t": "10:00", "e": 30},
            ],
        )
    engine.dispose()
    return url


@pytest.fixture
def app(sqlite_url):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "DATABASE_URL": sqlite_url,
        "METRICS_REFRESH_INTERVAL_SECONDS": 0,
        **SQLITE_QUERIES,
    })
    yield app
    app.extensions["data_source"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fake_app(fake_source):
    return create_app(
        {"TESTING": True, "SECRET_KEY": "test-secret", "METRICS_REFRESH_INTERVAL_SECONDS": 0},
        data_source=fake_source,
    )
