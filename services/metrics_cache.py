"""Background-refreshed cache of the dashboard's aggregate metrics."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from threading import Event, Lock, Thread
from typing import Any, Dict, Optional

from services.errors import DataSourceError, RowValidationError


log = logging.getLogger(__name__)

_DEFAULT_INTERVAL_SECONDS = 60

# Snapshot attribute -> column name returned by the aggregate query.
METRIC_COLUMNS = {
    "energy_generated": "energyGenerated",
    "current_power": "currentPower",
    "co2_saved": "co2Saved",
    "trees_saved": "treesSaved",
}


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    energy_generated: float = 0
    current_power: float = 0
    co2_saved: float = 0
    trees_saved: float = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MetricsSnapshot":
        """Build a snapshot from one aggregate row; all four columns are required."""
        values: Dict[str, float] = {}
        for attr, column in METRIC_COLUMNS.items():
            raw = row.get(column)
            if raw is None:
                raise RowValidationError(f"aggregate row is missing {column}", row)
            if isinstance(raw, Decimal):
                raw = float(raw)
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                try:
                    raw = float(raw)
                except (TypeError, ValueError):
                    raise RowValidationError(f"{column} is not numeric: {raw!r}", row) from None
            try:
                finite = math.isfinite(raw)
            except OverflowError:
                finite = False
            if not finite:
                raise RowValidationError(f"{column} is not finite: {raw!r}", row)
            values[attr] = raw
        return cls(**values)

    def as_dict(self) -> Dict[str, float]:
        return {column: getattr(self, attr) for attr, column in METRIC_COLUMNS.items()}


@dataclass(slots=True)
class RefreshStatus:
    last_attempt_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        for key in ("last_attempt_at", "last_success_at"):
            if out[key] is not None:
                out[key] = out[key].isoformat()
        return out


@dataclass(slots=True)
class MetricsCache:
    """
    Single-writer cache of the aggregate metrics.

    The refresher thread is the only writer. Each successful refresh swaps in a
    new immutable MetricsSnapshot, so readers always see a complete snapshot.
    """

    data_source: Any
    _snapshot: MetricsSnapshot = field(default_factory=MetricsSnapshot)
    _status: RefreshStatus = field(default_factory=RefreshStatus)
    _lock: Lock = field(default_factory=Lock, repr=False)
    _stop_event: Event | None = field(default=None, repr=False)
    _thread: Thread | None = field(default=None, repr=False)
    _started: bool = False

    # ---- Reads -----------------------------------------------------------------

    def get_snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return replace(self._snapshot)

    def status(self) -> RefreshStatus:
        with self._lock:
            return replace(self._status)

    # ---- Refresh ---------------------------------------------------------------

    def _record_failure(self, reason: str, attempted_at: datetime) -> None:
        with self._lock:
            self._status = RefreshStatus(
                last_attempt_at=attempted_at,
                last_success_at=self._status.last_success_at,
                last_error=reason,
                consecutive_failures=self._status.consecutive_failures + 1,
            )

    def refresh(self) -> bool:
        """Poll the data source once. Returns True when the snapshot was replaced."""
        attempted_at = datetime.now(timezone.utc)
        try:
            rows = self.data_source.fetch_dashboard_metrics()
            if not rows:
                raise RowValidationError("aggregate query returned no rows")
            snapshot = MetricsSnapshot.from_row(rows[0])
        except (DataSourceError, RowValidationError) as exc:
            log.warning("[metrics] refresh failed, keeping previous snapshot: %s", exc)
            self._record_failure(str(exc), attempted_at)
            return False
        except Exception as exc:
            log.exception("[metrics] unexpected refresh failure")
            self._record_failure(f"unexpected error: {exc}", attempted_at)
            return False

        with self._lock:
            self._snapshot = snapshot
            self._status = RefreshStatus(
                last_attempt_at=attempted_at,
                last_success_at=attempted_at,
                last_error=None,
                consecutive_failures=0,
            )
        log.info("[metrics] updated data: %s", snapshot.as_dict())
        return True

    # ---- Scheduling ------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_seconds: Optional[float] = None) -> None:
        """Seed the cache now, then keep it refreshed every interval seconds.

        An interval of 0 only seeds the cache. Calling start twice is a no-op.
        """
        if self._started:
            return
        self._started = True

        interval = (
            _DEFAULT_INTERVAL_SECONDS
            if interval_seconds is None
            else max(float(interval_seconds), 0)
        )

        self.refresh()

        if interval == 0:
            return

        stop_event = Event()

        def refresh_loop():  # pragma: no cover - background worker
            while not stop_event.wait(interval):
                self.refresh()

        thread = Thread(target=refresh_loop, name="metrics-refresh", daemon=True)
        self._stop_event = stop_event
        self._thread = thread
        thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scheduling refreshes and wait for the worker to exit."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("[metrics] refresh thread did not stop within %ss", timeout)
        self._thread = None
        self._stop_event = None
