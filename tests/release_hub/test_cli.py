"""Tests for the typer CLI."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from ReleaseHub import cli
from ReleaseHub.signing import TokenAuthority

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "releasehub.yaml"
    path.write_text("auth:\n  salt: cli-salt\nsync:\n  enabled: false\n")
    return str(path)


def test_sign(config_file):
    result = runner.invoke(cli.app, ["sign", "GET", "/api/artifact-download/a1", "-c", config_file])
    assert result.exit_code == 0
    assert result.stdout.strip() == TokenAuthority("cli-salt").signed_path(
        "GET", "/api/artifact-download/a1"
    )


def test_verify(config_file):
    signature = TokenAuthority("cli-salt").sign("GET", "/x")
    ok = runner.invoke(cli.app, ["verify", "GET", "/x", signature, "-c", config_file])
    assert ok.exit_code == 0
    bad = runner.invoke(cli.app, ["verify", "GET", "/y", signature, "-c", config_file])
    assert bad.exit_code == 1


def test_sign_requires_salt(tmp_path):
    path = tmp_path / "nosalt.yaml"
    path.write_text("sync:\n  enabled: false\n")
    result = runner.invoke(cli.app, ["sign", "GET", "/x", "-c", str(path)])
    assert result.exit_code == 1


def test_print_config_masks_salt(config_file):
    result = runner.invoke(cli.app, ["print-config", "-c", config_file, "--raw"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["auth"]["salt"] == "***"
    assert "cli-salt" not in result.stdout


def test_validate_config(config_file, tmp_path):
    assert runner.invoke(cli.app, ["validate-config", config_file]).exit_code == 0
    broken = tmp_path / "broken.yaml"
    broken.write_text("sync:\n  interval_s: -1\n")
    assert runner.invoke(cli.app, ["validate-config", str(broken)]).exit_code == 1


def test_schema_to_file(tmp_path):
    output = tmp_path / "schema.json"
    result = runner.invoke(cli.app, ["schema", "--output", str(output)])
    assert result.exit_code == 0
    assert "properties" in json.loads(output.read_text())


def test_download_unknown_artifact(config_file, tmp_path):
    output = tmp_path / "out.bin"
    result = runner.invoke(cli.app, ["download", "missing", "--output", str(output), "-c", config_file])
    assert result.exit_code == 1
    assert not output.exists()
