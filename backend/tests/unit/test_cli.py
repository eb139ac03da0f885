"""Tests for CLI argument handling."""

import pytest
from click.testing import CliRunner

from face_match import __version__
from face_match.cli.main import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def selfie(tmp_path):
    path = tmp_path / "selfie.jpg"
    path.write_bytes(b"selfie")
    return str(path)


def test_version(runner):
    result = runner.invoke(cli, ["--log-level", "INFO", "version"])
    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.parametrize("args", [
    ["drain", "--batch-size", "0"],
    ["drain", "--concurrency", "0"],
    ["setup-event", "42", "--batch-size", "0"],
    ["setup-event", "42", "--concurrency", "-1"],
])
def test_rejects_non_positive_counts(runner, args):
    result = runner.invoke(cli, ["--log-level", "INFO"] + args)
    assert result.exit_code == 2
    assert "Invalid value" in result.output


def test_search_rejects_zero_max_results(runner, selfie):
    result = runner.invoke(cli, ["--log-level", "INFO", "search", "42", selfie, "--max-results", "0"])
    assert result.exit_code == 2
    assert "--max-results" in result.output
