from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml


BASE_CONFIG: dict[str, Any] = {
    "port": 8080,
    "tenant": "t1",
    "logs": {"terminal": True, "dailyRotateFile": False, "loki": False},
    "database": {"host": "h", "username": "u", "password": "p"},
}


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("APP_") or name in {"PORT", "LOG_LEVEL"}:
            monkeypatch.delenv(name)
    # Recorded so values written by the CLI are restored after each test.
    monkeypatch.setenv("ALUMNI_ENV", "local")
    monkeypatch.setenv("ALUMNI_CONFIG_DIR", "")


def write_config_dir(
    directory: Path,
    base: dict[str, Any] | None = None,
    environments: dict[str, dict[str, Any]] | None = None,
) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "base.yaml").write_text(
        yaml.safe_dump(BASE_CONFIG if base is None else base),
        encoding="utf-8",
    )
    for name, payload in (environments or {"local": {}}).items():
        (directory / f"{name}.yaml").write_text(yaml.safe_dump(payload), encoding="utf-8")
    return directory


@pytest.fixture
def make_config_dir(tmp_path: Path) -> Callable[..., Path]:
    def _make(
        base: dict[str, Any] | None = None,
        environments: dict[str, dict[str, Any]] | None = None,
        name: str = "configurations",
    ) -> Path:
        return write_config_dir(tmp_path / name, base=base, environments=environments)

    return _make


@pytest.fixture
def config_dir(make_config_dir: Callable[..., Path]) -> Path:
    return make_config_dir()


@pytest.fixture
def base_config() -> dict[str, Any]:
    return copy.deepcopy(BASE_CONFIG)
