from __future__ import annotations
import atexit
import json
import logging
import os
from datetime import timedelta
from pathlib import Path

import click
from dotenv import load_dotenv
from flask import Flask, current_app
from flask.cli import with_appcontext

from services.auth import hash_password
from services.data_source import (
    DEFAULT_ENERGY_BAR_QUERY,
    DEFAULT_METRICS_QUERY,
    DEFAULT_POWER_TREND_QUERY,
    DEFAULT_USER_QUERY,
    SqlDataSource,
)
from services.metrics_cache import MetricsCache
from services.sessions import SessionGate

BASE_DIR = Path(__file__).resolve().parent


def _env_flag(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


# 1) CLI commands
@click.command("refresh-metrics")
@click.option("--dump", is_flag=True, help="Print the cached metrics as JSON")
@with_appcontext
def refresh_metrics_cmd(dump: bool) -> None:
    """Poll the aggregate metrics once and report the result."""
    cache: MetricsCache = current_app.extensions["metrics_cache"]
    if cache.refresh():
        click.echo("Metrics refreshed.")
    else:
        click.echo(f"Refresh failed: {cache.status().last_error}")

    if dump:
        click.echo(json.dumps(cache.get_snapshot().as_dict(), indent=2, sort_keys=True))


@click.command("hash-password")
@click.password_option()
def hash_password_cmd(password: str) -> None:
    """Print a password hash suitable for the Users table."""
    click.echo(hash_password(password))


# 2) App factory
def create_app(test_config: dict | None = None, *, data_source=None) -> Flask:
    load_dotenv()  # loads .env from project root

    app = Flask(__name__, instance_relative_config=False)

    app.config.from_mapping({
        "SECRET_KEY": os.getenv("FLASK_SECRET_KEY", "dev-change-me"),
        "DATABASE_URL": os.getenv("DATABASE_URL", ""),
        # SQL Server stored procedures by default; override for other databases.
        "METRICS_QUERY": os.getenv("METRICS_QUERY", DEFAULT_METRICS_QUERY),
        "USER_QUERY": os.getenv("USER_QUERY", DEFAULT_USER_QUERY),
        "POWER_TREND_QUERY": os.getenv("POWER_TREND_QUERY", DEFAULT_POWER_TREND_QUERY),
        "ENERGY_BAR_QUERY": os.getenv("ENERGY_BAR_QUERY", DEFAULT_ENERGY_BAR_QUERY),
        "METRICS_REFRESH_INTERVAL_SECONDS": _env_int("METRICS_REFRESH_INTERVAL_SECONDS", 60),
        "ALLOW_PLAINTEXT_PASSWORDS": _env_flag("ALLOW_PLAINTEXT_PASSWORDS", False),
        "SESSION_LIFETIME_MINUTES": _env_int("SESSION_LIFETIME_MINUTES", 60),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO").upper(),
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_HTTPONLY": True,
    })
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    lifetime = timedelta(minutes=int(app.config["SESSION_LIFETIME_MINUTES"]))
    app.config["PERMANENT_SESSION_LIFETIME"] = lifetime

    if data_source is None:
        data_source = SqlDataSource.from_config(app.config)
    if not app.config["DATABASE_URL"] and isinstance(data_source, SqlDataSource):
        app.logger.warning("[db] DATABASE_URL is not set; metrics stay at zero and logins fail")

    cache = MetricsCache(data_source)
    app.extensions["data_source"] = data_source
    app.extensions["metrics_cache"] = cache
    app.extensions["session_gate"] = SessionGate(lifetime)

    # Blueprints
    from blueprints.web import web_bp
    from blueprints.api import api_bp
    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp, url_prefix="/api")

    app.cli.add_command(refresh_metrics_cmd, name="refresh-metrics")
    app.cli.add_command(hash_password_cmd, name="hash-password")

    # Seed the metrics cache and keep it refreshed in the background.
    try:
        cache.start(interval_seconds=app.config.get("METRICS_REFRESH_INTERVAL_SECONDS"))
    except Exception as exc:  # pragma: no cover - defensive
        app.logger.warning("[metrics] unable to start refresher: %s", exc)
    else:
        if cache.running:
            atexit.register(cache.stop, 5)

    return app


# 3) Normal run entrypoint
if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=_env_int("PORT", 3000), debug=False, threaded=True)
