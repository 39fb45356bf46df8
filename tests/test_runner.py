"""Tests for the subprocess runner."""

import sys

import pytest

from meshdeploy.errors import CommandError
from meshdeploy.runner import CommandRunner


def test_output_and_json():
    runner = CommandRunner()
    assert runner.output([sys.executable, "-c", "print('  hello  ')"]) == "hello"
    assert runner.json([sys.executable, "-c", "print('{\"a\": [1, 2]}')"]) == {"a": [1, 2]}
    assert runner.json([sys.executable, "-c", "pass"]) is None


def test_input_is_passed_on_stdin():
    runner = CommandRunner()
    script = "import sys; print(sys.stdin.read().upper())"
    assert runner.output([sys.executable, "-c", script], input="kind: Namespace") == "KIND: NAMESPACE"


def test_failure_carries_stderr():
    runner = CommandRunner()
    script = "import sys; sys.stderr.write('boom\\n'); sys.exit(4)"
    with pytest.raises(CommandError) as excinfo:
        runner.run([sys.executable, "-c", script])
    assert excinfo.value.returncode == 4
    assert excinfo.value.detail == "boom"
    assert "Command failed" in str(excinfo.value)


def test_failure_without_output_reports_exit_code():
    runner = CommandRunner()
    with pytest.raises(CommandError, match="exit=3"):
        runner.run([sys.executable, "-c", "import sys; sys.exit(3)"])


def test_check_false_returns_result():
    runner = CommandRunner()
    result = runner.run([sys.executable, "-c", "import sys; sys.exit(2)"], check=False)
    assert result.returncode == 2


def test_cwd(tmp_path):
    runner = CommandRunner(cwd=tmp_path)
    assert runner.output([sys.executable, "-c", "import os; print(os.getcwd())"]) == str(
        tmp_path.resolve()
    )


def test_exists():
    runner = CommandRunner()
    assert runner.exists(sys.executable)
    assert not runner.exists("definitely-not-a-real-cli-binary")
