from __future__ import annotations
from flask import Blueprint, current_app, jsonify

from services.errors import DataSourceError
from services.trend_data import fetch_trend_payload

api_bp = Blueprint("api", __name__)


@api_bp.get("/trend-data")
def api_trend_data():
    """Chart series: {timeLabels, activePowerValues, poaValues, energyTimeLabels, energyValues}."""
    try:
        payload = fetch_trend_payload(current_app.extensions["data_source"])
    except DataSourceError as exc:
        current_app.logger.error("[trend] API database error: %s", exc)
        return jsonify({"error": str(exc)}), 500
    except Exception as exc:
        current_app.logger.exception("[trend] unexpected error building trend data")
        return jsonify({"error": str(exc) or exc.__class__.__name__}), 500
    return jsonify(payload)


@api_bp.get("/metrics")
def api_metrics():
    """Current cached aggregate metrics plus refresh bookkeeping."""
    cache = current_app.extensions["metrics_cache"]
    return jsonify({
        "metrics": cache.get_snapshot().as_dict(),
        "refresh": cache.status().as_dict(),
    })
