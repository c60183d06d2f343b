"""Reshape power-trend and energy-bar rows into parallel chart arrays."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List

from services.errors import RowValidationError


log = logging.getLogger(__name__)

POWER_FIELDS = ("Date_Time", "ACTIVE_POWER", "POA")
ENERGY_FIELDS = ("TIME", "energyGenerated")


@dataclass(frozen=True, slots=True)
class PowerTrendPoint:
    time_label: str
    active_power: float
    poa: float


@dataclass(frozen=True, slots=True)
class EnergyBarPoint:
    time_label: str
    energy_generated: float


# ---- Field helpers -------------------------------------------------------------

def _is_missing(value: Any) -> bool:
    # Zero is a real reading (night-time power), only absent/blank values count.
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _require_fields(row: Dict[str, Any], fields: Iterable[str]) -> None:
    missing = [name for name in fields if _is_missing(row.get(name))]
    if missing:
        raise RowValidationError(f"missing {', '.join(missing)}", row)


def _to_number(value: Any, name: str, row: Dict[str, Any]) -> float:
    if isinstance(value, bool):
        raise RowValidationError(f"{name} is not numeric: {value!r}", row)
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, Decimal):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            raise RowValidationError(f"{name} is not numeric: {value!r}", row) from None
    # NaN and infinities cannot be written as JSON.
    try:
        finite = math.isfinite(number)
    except OverflowError:
        finite = False
    if not finite:
        raise RowValidationError(f"{name} is not finite: {value!r}", row)
    return number


def parse_timestamp(value: Any) -> datetime:
    """Return an aware UTC datetime; naive values are taken to already be UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except (ValueError, OverflowError):
            raise RowValidationError(f"invalid date format: {value!r}") from None
    else:
        raise RowValidationError(f"invalid date format: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        raise RowValidationError(f"date out of range in UTC: {value!r}") from None


# ---- Row iterators ---------------------------------------------------------------

def _power_point(row: Dict[str, Any]) -> PowerTrendPoint:
    _require_fields(row, POWER_FIELDS)
    try:
        moment = parse_timestamp(row["Date_Time"])
    except RowValidationError as exc:
        raise RowValidationError(str(exc), row) from None
    return PowerTrendPoint(
        time_label=moment.strftime("%H:%M"),
        active_power=_to_number(row["ACTIVE_POWER"], "ACTIVE_POWER", row),
        poa=_to_number(row["POA"], "POA", row),
    )


def _energy_point(row: Dict[str, Any]) -> EnergyBarPoint:
    _require_fields(row, ENERGY_FIELDS)
    label = row["TIME"]
    return EnergyBarPoint(
        time_label=label.strip() if isinstance(label, str) else str(label),
        energy_generated=_to_number(row["energyGenerated"], "energyGenerated", row),
    )


def iter_power_trend(rows: Iterable[Dict[str, Any]]) -> Iterator[PowerTrendPoint]:
    """Yield valid power-trend points in input order, skipping bad rows."""
    for row in rows:
        try:
            yield _power_point(row)
        except RowValidationError as exc:
            log.warning("[trend] skipping power trend row (%s): %r", exc, row)


def iter_energy_bar(rows: Iterable[Dict[str, Any]]) -> Iterator[EnergyBarPoint]:
    """Yield valid energy-bar points in input order, skipping bad rows."""
    for row in rows:
        try:
            yield _energy_point(row)
        except RowValidationError as exc:
            log.warning("[trend] skipping energy bar row (%s): %r", exc, row)


# ---- Payload builders --------------------------------------------------------------

def reshape_power_trend(rows: Iterable[Dict[str, Any]]) -> Dict[str, List[Any]]:
    time_labels: List[str] = []
    active_power: List[float] = []
    poa: List[float] = []
    for point in iter_power_trend(rows):
        time_labels.append(point.time_label)
        active_power.append(point.active_power)
        poa.append(point.poa)
    return {"timeLabels": time_labels, "activePowerValues": active_power, "poaValues": poa}


def reshape_energy_bar(rows: Iterable[Dict[str, Any]]) -> Dict[str, List[Any]]:
    labels: List[str] = []
    values: List[float] = []
    for point in iter_energy_bar(rows):
        labels.append(point.time_label)
        values.append(point.energy_generated)
    return {"energyTimeLabels": labels, "energyValues": values}


def build_trend_payload(
    power_rows: Iterable[Dict[str, Any]],
    energy_rows: Iterable[Dict[str, Any]],
) -> Dict[str, List[Any]]:
    """Combine both series; the power and energy pairs may differ in length."""
    payload = reshape_power_trend(power_rows)
    payload.update(reshape_energy_bar(energy_rows))
    return payload


def fetch_trend_payload(data_source) -> Dict[str, List[Any]]:
    """Fetch both series and reshape them. DataSourceError propagates."""
    power_rows = data_source.fetch_power_trend()
    log.debug("[trend] power trend rows: %d", len(power_rows))
    energy_rows = data_source.fetch_energy_bar()
    log.debug("[trend] energy bar rows: %d", len(energy_rows))
    return build_trend_payload(power_rows, energy_rows)
