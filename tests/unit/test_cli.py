import json
import os
from pathlib import Path
from typing import Any, Callable

import pytest

from alumni_api.cli import main
from alumni_api.config.errors import SchemaValidationError
from alumni_api.server.app import effective_workers


def test_config_command_prints_redacted_configuration(config_dir: Path, capsys) -> None:
    rc = main(["config", "--config-dir", str(config_dir)])
    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["environment"] == "local"
    assert payload["configuration"]["port"] == 8080
    assert payload["configuration"]["database"]["password"] == "***"
    assert payload["database_target"] == {
        "host": "h",
        "port": 3306,
        "user": "u",
        "database": "t1",
        "connection_limit": 10,
    }


def test_config_command_honours_environment_option(
    make_config_dir: Callable[..., Path],
    capsys,
) -> None:
    directory = make_config_dir(environments={"local": {}, "production": {"port": 7000}})
    rc = main(["config", "--config-dir", str(directory), "--environment", "production"])
    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["environment"] == "production"
    assert payload["configuration"]["port"] == 7000


def test_config_command_propagates_validation_failure(
    config_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_LOGS__LOKI", "true")
    with pytest.raises(SchemaValidationError):
        main(["config", "--config-dir", str(config_dir)])


def test_check_command_reports_success(config_dir: Path, capsys) -> None:
    rc = main(["check", "--config-dir", str(config_dir)])
    assert rc == 0
    assert json.loads(capsys.readouterr().out) == {"ok": True, "issues": []}


def test_check_command_lists_every_issue(
    make_config_dir: Callable[..., Path],
    base_config: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
    capsys,
) -> None:
    del base_config["port"]
    directory = make_config_dir(base=base_config)
    monkeypatch.setenv("APP_LOGS__LOKI", "yes")
    rc = main(["check", "--config-dir", str(directory)])
    assert rc == 1
    report = json.loads(capsys.readouterr().out)
    assert report["ok"] is False
    assert [issue["path"] for issue in report["issues"]] == ["port", "logs.lokiUrl"]


def test_serve_command_runs_uvicorn_factory(
    config_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, Any] = {}

    def _run(app: str, **kwargs: Any) -> None:
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr("uvicorn.run", _run)
    monkeypatch.setattr(os, "cpu_count", lambda: 4)
    rc = main(["serve", "--config-dir", str(config_dir), "--host", "127.0.0.1"])
    assert rc == 0
    assert captured["app"] == "alumni_api.server.app:build_app"
    assert captured["factory"] is True
    assert captured["host"] == "127.0.0.1"
    assert captured["port"] == 8080
    assert captured["workers"] == 4
    assert os.environ["ALUMNI_CONFIG_DIR"] == str(config_dir)


@pytest.mark.parametrize(
    ("requested", "cpus", "expected"),
    [(-1, 8, 8), (0, 8, 8), (3, 8, 3), (16, 8, 8), (1, 1, 1)],
)
def test_effective_workers(requested: int, cpus: int, expected: int) -> None:
    assert effective_workers(requested, cpus) == expected
