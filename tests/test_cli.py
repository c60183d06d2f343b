from __future__ import annotations

import json

from werkzeug.security import check_password_hash


def test_refresh_metrics_dump(app):
    result = app.test_cli_runner().invoke(args=["refresh-metrics", "--dump"])
    assert result.exit_code == 0
    assert "Metrics refreshed." in result.output
    output = result.output
    payload = json.loads(output[output.index("{"):output.rindex("}") + 1])
    assert payload["treesSaved"] == 21.0


def test_refresh_metrics_reports_failure(fake_app, fake_source):
    fake_source.fail = True
    result = fake_app.test_cli_runner().invoke(args=["refresh-metrics"])
    assert "Refresh failed: connection refused" in result.output


def test_hash_password(app):
    result = app.test_cli_runner().invoke(args=["hash-password"], input="pw\npw\n")
    assert result.exit_code == 0
    hashed = result.output.strip().splitlines()[-1]
    assert check_password_hash(hashed, "pw")
