"""
SqlDataSource: the only place that talks to the metrics database.

- Each public method runs one configured statement and returns plain dicts.
- Statements default to the SQL Server stored procedures the dashboard was
  built against; any SQLAlchemy URL works as long as the statements do.
- Every driver/SQL failure is re-raised as DataSourceError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from services.errors import DataSourceError


log = logging.getLogger(__name__)

DEFAULT_METRICS_QUERY = "EXEC sp_GetDashboardData"
DEFAULT_USER_QUERY = "SELECT * FROM Users WHERE username = :username"
DEFAULT_POWER_TREND_QUERY = "EXEC sp_GetTrendData"
DEFAULT_ENERGY_BAR_QUERY = "EXEC sp_GetBarTrendData"


@dataclass(slots=True)
class SqlDataSource:
    """Runs the dashboard's four statements against a SQLAlchemy engine."""

    database_url: str = ""
    metrics_query: str = DEFAULT_METRICS_QUERY
    user_query: str = DEFAULT_USER_QUERY
    power_trend_query: str = DEFAULT_POWER_TREND_QUERY
    energy_bar_query: str = DEFAULT_ENERGY_BAR_QUERY
    engine: Engine | None = None
    _engine_lock: Lock = field(default_factory=Lock, repr=False)

    @classmethod
    def from_config(cls, config) -> "SqlDataSource":
        return cls(
            database_url=(config.get("DATABASE_URL") or "").strip(),
            metrics_query=config.get("METRICS_QUERY") or DEFAULT_METRICS_QUERY,
            user_query=config.get("USER_QUERY") or DEFAULT_USER_QUERY,
            power_trend_query=config.get("POWER_TREND_QUERY") or DEFAULT_POWER_TREND_QUERY,
            energy_bar_query=config.get("ENERGY_BAR_QUERY") or DEFAULT_ENERGY_BAR_QUERY,
        )

    # ---- Connection helpers ----------------------------------------------------

    def _get_engine(self) -> Engine:
        # Engine creation is lazy so the app boots even when the DB is down.
        with self._engine_lock:
            if self.engine is None:
                if not self.database_url:
                    raise DataSourceError("DATABASE_URL is not configured")
                try:
                    self.engine = create_engine(self.database_url, pool_pre_ping=True)
                except (SQLAlchemyError, ImportError, ValueError) as exc:
                    raise DataSourceError(f"cannot create engine: {exc}") from exc
            return self.engine

    def _fetch_all(self, statement: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        engine = self._get_engine()
        try:
            with engine.connect() as conn:
                result = conn.execute(text(statement), params or {})
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            log.debug("[db] statement failed: %s", statement)
            raise DataSourceError(str(getattr(exc, "orig", None) or exc)) from exc

    def dispose(self) -> None:
        with self._engine_lock:
            if self.engine is not None:
                self.engine.dispose()
                self.engine = None

    # ---- Queries ---------------------------------------------------------------

    def fetch_dashboard_metrics(self) -> List[Dict[str, Any]]:
        return self._fetch_all(self.metrics_query)

    def find_user(self, username: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch_all(self.user_query, {"username": username})
        return rows[0] if rows else None

    def fetch_power_trend(self) -> List[Dict[str, Any]]:
        return self._fetch_all(self.power_trend_query)

    def fetch_energy_bar(self) -> List[Dict[str, Any]]:
        return self._fetch_all(self.energy_bar_query)
