"""Tests for the command and prompt helpers."""

import subprocess

import pytest

from mcgke import utils


def test_run_quiet_returns_stdout(shell) -> None:
    shell.on("helm", "version", stdout="v3.14.0\n")

    assert utils.run_quiet(["helm", "version"]) == (True, "v3.14.0\n")


def test_run_quiet_prefers_stderr_on_failure(shell) -> None:
    shell.on("helm", "repo", returncode=1, stdout="partial", stderr="Error: no repositories")

    assert utils.run_quiet(["helm", "repo", "update"]) == (False, "Error: no repositories")


def test_run_quiet_missing_binary(monkeypatch) -> None:
    def missing(*args, **kwargs):
        raise FileNotFoundError("kubectl")

    monkeypatch.setattr(utils.subprocess, "run", missing)

    assert utils.run_quiet(["kubectl", "version"]) == (False, "kubectl not found")


def test_run_checks_exit_code(shell) -> None:
    shell.on("terraform", returncode=2)

    with pytest.raises(subprocess.CalledProcessError):
        utils.run(["terraform", "init"])
    assert utils.run(["terraform", "init"], check=False).returncode == 2


def test_run_streamed_collects_output(shell) -> None:
    shell.on("terraform", "apply", returncode=1, stdout="Plan: 2 to add\n", stderr="Error: quota\n")

    returncode, output = utils.run_streamed(["terraform", "apply", "tfplan"])

    assert returncode == 1
    assert output == "Plan: 2 to add\nError: quota\n"


def test_format_cmd_quotes_arguments() -> None:
    assert utils.format_cmd(["kubectl", "get", "pods", "-l", "app=a b"]) == "kubectl get pods -l 'app=a b'"


def test_poll_returns_first_truthy_result() -> None:
    results = iter([None, "", "34.1.2.3"])

    assert utils.poll(lambda: next(results), 0, attempts=5) == "34.1.2.3"


def test_poll_gives_up_after_attempts() -> None:
    calls = []

    def never():
        calls.append(1)
        return False

    assert utils.poll(never, 0, attempts=3) is False
    assert len(calls) == 3


def test_poll_timeout() -> None:
    assert utils.poll(lambda: None, 0, timeout=0) is None


@pytest.mark.parametrize("answer, expected", [("2", 2), ("0", None), ("5", None), ("two", None)])
def test_choose(answers, answer, expected) -> None:
    answers.add(answer)

    assert utils.choose("Enter your choice", ["Continue", "Reinstall", "Abort"]) == expected


def test_ask_strips_and_defaults(answers) -> None:
    answers.add("  demo  ", None)

    assert utils.ask("Enter your prefix") == "demo"
    assert utils.ask("Enter GCP zone", "us-central1-c") == "us-central1-c"


def test_confirm_delete_requires_exact_word(answers) -> None:
    answers.add("delete", "DELETE")

    assert utils.confirm_delete("Sure?") is False
    assert utils.confirm_delete("Sure?") is True


def test_confirm_abort_is_no(monkeypatch) -> None:
    def interrupted(*args, **kwargs):
        raise utils.click.Abort()

    monkeypatch.setattr(utils.click, "confirm", interrupted)

    assert utils.confirm("Continue?") is False
