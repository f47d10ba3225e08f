import importlib

import pytest
from click.testing import CliRunner


@pytest.mark.unit
def test_help_does_not_require_config(monkeypatch, tmp_path):
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.delenv("TABSNOOZE_HOME", raising=False)

    import tabsnooze.cli.main as cli_main

    importlib.reload(cli_main)

    runner = CliRunner()
    result = runner.invoke(cli_main.cli, ["--help"])

    assert result.exit_code == 0
    assert "Usage:" in result.output
    assert not (xdg / "tabsnooze" / "config.toml").exists()


@pytest.mark.unit
@pytest.mark.parametrize(
    "command", ["defer", "list", "wake", "remove", "reschedule", "run", "settings"]
)
def test_subcommand_help(command):
    from tabsnooze.cli.main import cli

    result = CliRunner().invoke(cli, [command, "--help"])
    assert result.exit_code == 0
    assert "Usage:" in result.output
