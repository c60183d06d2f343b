from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, redirect, render_template, request, url_for

from services.auth import authenticate
from services.errors import AuthenticationFailure, DataSourceError, SessionError
from services.metrics_cache import MetricsCache
from services.sessions import SessionGate

web_bp = Blueprint("web", __name__)

INVALID_LOGIN_MESSAGE = "Invalid username or password!"
DATABASE_ERROR_MESSAGE = "Database error!"


def metrics_cache() -> MetricsCache:
    return current_app.extensions["metrics_cache"]


def session_gate() -> SessionGate:
    return current_app.extensions["session_gate"]


def metrics_context() -> Dict[str, Any]:
    return metrics_cache().get_snapshot().as_dict()


def render_login(message: str = "", status: int = 200):
    return render_template("login.html", message=message, **metrics_context()), status


@web_bp.route("/")
def index():
    return render_login()


@web_bp.route("/dashboard")
def dashboard():
    user = session_gate().current_user()
    if user is None:
        return redirect(url_for("web.index"))
    return render_template("dashboard.html", username=user["username"], **metrics_context())


@web_bp.post("/login")
def login():
    username = request.form.get("username", "")
    password = request.form.get("password", "")
    try:
        user = authenticate(
            current_app.extensions["data_source"],
            username,
            password,
            allow_plaintext=current_app.config.get("ALLOW_PLAINTEXT_PASSWORDS", False),
        )
    except AuthenticationFailure:
        return render_login(INVALID_LOGIN_MESSAGE)
    except DataSourceError as exc:
        current_app.logger.error("[auth] login lookup failed: %s", exc)
        return render_login(DATABASE_ERROR_MESSAGE)

    session_gate().sign_in(user)
    return redirect(url_for("web.dashboard"))


@web_bp.route("/inverter")
def inverter():
    return render_template("inverter.html")


@web_bp.route("/logout")
def logout():
    try:
        session_gate().sign_out()
    except SessionError as exc:
        current_app.logger.error("[session] logout failed: %s", exc)
        return redirect(url_for("web.dashboard"))
    return redirect(url_for("web.index"))
