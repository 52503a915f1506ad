"""Tests for the --log-level option."""

from click.testing import CliRunner

from tests.conftest import write_yaml
from treehouse.cli import main

CONFIG = """
hooks:
  post-init:
    jobs:
      - name: hello
        run: "true"
"""


def test_cli_log_level_info_shows_progress(git_repo):
    """--log-level INFO should surface scheduler progress messages."""
    write_yaml(git_repo / "treehouse.yml", CONFIG)
    result = CliRunner().invoke(main, [
        "--log-level", "INFO",
        "hooks", "run", "post-init", "--path", str(git_repo),
    ])
    assert result.exit_code == 0, result.output
    assert "Running" in result.output


def test_cli_log_level_default_is_warning(git_repo):
    """Default log level should be WARNING, so no INFO in output."""
    write_yaml(git_repo / "treehouse.yml", CONFIG)
    result = CliRunner().invoke(main, ["hooks", "run", "post-init", "--path", str(git_repo)])
    assert result.exit_code == 0
    assert "Running" not in result.output


def test_cli_log_level_case_insensitive():
    """--log-level should accept lowercase."""
    result = CliRunner().invoke(main, ["--log-level", "debug", "version"])
    assert result.exit_code == 0


def test_cli_log_level_rejects_unknown():
    result = CliRunner().invoke(main, ["--log-level", "LOUD", "version"])
    assert result.exit_code == 2
