"""Tests for the CLI commands that do not start a browser."""

import json

from typer.testing import CliRunner

from supplier_sync.cli import app

runner = CliRunner()

RECIPES = [
    {
        "supplier": "Acme",
        "version": "1.0.0",
        "steps": [{"action": "open", "url": "https://acme.example"}, {"action": "move", "value": "pdf"}],
    },
    {"supplier": "Cloudy", "version": "0.2.0", "steps": [{"action": "oauth2-check-tokens"}]},
]


def test_recipes_lists_file_contents(tmp_path):
    path = tmp_path / "recipes.json"
    path.write_text(json.dumps({"version": "7", "recipes": RECIPES}))

    result = runner.invoke(app, ["recipes", "--recipes", str(path)])

    assert result.exit_code == 0
    assert "Recipe database version 7" in result.output
    assert "Acme 1.0.0 (browser, 2 steps)" in result.output
    assert "Cloudy 0.2.0 (client, 1 steps)" in result.output


def test_recipes_invalid_file(tmp_path):
    path = tmp_path / "recipes.json"
    path.write_text("[{]")

    result = runner.invoke(app, ["recipes", "--recipes", str(path)])

    assert result.exit_code == 2
    assert "Cannot parse recipe file" in result.output


def test_sync_unknown_supplier(tmp_path):
    path = tmp_path / "recipes.json"
    path.write_text(json.dumps(RECIPES))

    result = runner.invoke(app, ["sync", "--recipes", str(path), "--supplier", "Nobody"])

    assert result.exit_code == 2
    assert "No recipe for supplier 'Nobody'" in result.output


def test_config_shows_settings():
    result = runner.invoke(app, ["config"])

    assert result.exit_code == 0
    assert "Browser Step Timeout" in result.output
