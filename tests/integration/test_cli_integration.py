import json
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from flatten_select import cli, settings


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "ENV_FILE", "")


@pytest.mark.integration
def test_export_runs_on_a_worker_thread_with_a_cancel_event(
    write_tree,
    project: Path,
    tmp_path: Path,
    mocker: MockerFixture,
) -> None:
    write_tree({"src/app.py": "print('hi')\n"})
    output = tmp_path / "out.md"
    spy = mocker.spy(cli, "run_export")

    exit_code = cli.main(["export", "--root", str(project), "--output", str(output), "--format", "md"])

    assert exit_code == 0
    assert output.exists()
    kwargs = spy.call_args.kwargs
    assert kwargs["cancel_event"] is not None
    assert not kwargs["cancel_event"].is_set()
    assert kwargs["overwrite"] is False


@pytest.mark.integration
def test_profile_and_flags_drive_preview(
    write_tree,
    project: Path,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    write_tree({"src/a.py": "a" * 8, "docs/guide.md": "g" * 8, "notes.txt": "n" * 8})
    profile = tmp_path / "profile.yaml"
    profile.write_text(f"rootPath: {project}\nincludeExtensions: ['.py', '.md']\n", encoding="utf-8")

    exit_code = cli.main(["preview", "--config", str(profile), "--select", "docs=exclude", "--bytes-per-token", "0"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == {"includedFiles": 1, "estimatedBytes": 8, "estimatedTokens": None, "warnings": []}


@pytest.mark.integration
def test_export_refuses_to_overwrite(
    write_tree,
    project: Path,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    write_tree({"a.txt": "a\n"})
    output = tmp_path / "out.txt"
    output.write_text("keep me", encoding="utf-8")

    exit_code = cli.main(["export", "--root", str(project), "--output", str(output)])

    assert exit_code == cli.EXIT_ERROR
    assert capsys.readouterr().err.startswith("[E_OUTPUT_EXISTS]")
    assert output.read_text(encoding="utf-8") == "keep me"

    assert cli.main(["export", "--root", str(project), "--output", str(output), "--overwrite"]) == 0
    assert "=== FILE: a.txt" in output.read_text(encoding="utf-8")


@pytest.mark.integration
def test_log_file_receives_structured_events(
    write_tree,
    project: Path,
    tmp_path: Path,
    mocker: MockerFixture,
) -> None:
    write_tree({"a.txt": "a\n"})
    setup = mocker.patch.object(cli, "setup_logging")
    log_file = tmp_path / "run.log"

    exit_code = cli.main(["evaluate", "--root", str(project), "--log-file", str(log_file)])

    assert exit_code == 0
    setup.assert_called_once_with(str(log_file))
