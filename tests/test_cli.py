from __future__ import annotations

import pytest
from rich.console import Console

import sample_tasks
from pfr import cli


@pytest.fixture(autouse=True)
def _wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "_CONSOLE", Console(width=200))


def test_cli_list_tasks(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--module", "sample_tasks", "list"])
    output = capsys.readouterr().out
    assert code == 0
    assert "Registered Tasks" in output
    assert "add_points" in output


def test_cli_call_task(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--module", "sample_tasks", "call", "add", "2", "3", "--timeout", "30"])
    output = capsys.readouterr().out
    assert code == 0
    assert "5" in output


def test_cli_call_by_id_with_kwargs(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["call", sample_tasks.add.task_id, "40", "--kwarg", "b=2", "--timeout", "30"])
    output = capsys.readouterr().out
    assert code == 0
    assert "42" in output


def test_cli_bare_words_are_strings(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["call", "echo", "hello", "--timeout", "30"])
    output = capsys.readouterr().out
    assert code == 0
    assert "'hello'" in output


def test_cli_task_failure_returns_one(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["call", "explode", "kaboom", "--timeout", "30"])
    output = capsys.readouterr().out
    assert code == 1
    assert "HandlerFailure" in output


def test_cli_unknown_task(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["call", "missing_task"])
    output = capsys.readouterr().out
    assert code == 1
    assert "No task matched" in output


def test_cli_rejects_malformed_kwarg(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["call", "add", "1", "--kwarg", "b"])
    assert exc_info.value.code == 2
    assert "KEY=VALUE" in capsys.readouterr().out


def test_cli_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.main([])


def test_cli_bad_arity_is_reported_not_raised(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--module", "sample_tasks", "call", "add", "2", "--timeout", "30"])
    output = capsys.readouterr().out
    assert code == 1
    assert "EncodeError" in output
    assert "missing a required argument" in output
