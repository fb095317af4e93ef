"""Startup configuration resolution."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from alumni_api.config.errors import SchemaValidationError
from alumni_api.config.schema import ResolvedConfiguration, canonicalize_keys, redact, validate_config
from alumni_api.config.sources import LayeredConfig, RawConfiguration, load_environment, load_file
from alumni_api.core.logging import get_logger


DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "configurations"
DEFAULT_ENVIRONMENT = "local"
ENVIRONMENT_VARIABLE = "ALUMNI_ENV"
CONFIG_DIR_VARIABLE = "ALUMNI_CONFIG_DIR"
ENV_PREFIX = "APP"
ENV_PREFIX_SEPARATOR = "_"
ENV_KEY_SEPARATOR = "__"


def resolve_environment(environ: Mapping[str, str] | None = None) -> str:
    source = os.environ if environ is None else environ
    return (source.get(ENVIRONMENT_VARIABLE) or DEFAULT_ENVIRONMENT).strip() or DEFAULT_ENVIRONMENT


def resolve_config_dir(environ: Mapping[str, str] | None = None) -> Path:
    source = os.environ if environ is None else environ
    configured = (source.get(CONFIG_DIR_VARIABLE) or "").strip()
    return Path(configured).expanduser() if configured else DEFAULT_CONFIG_DIR


def load_local_env() -> None:
    """Load a working-directory .env file outside production; existing variables win."""
    if resolve_environment() != "production":
        load_dotenv(override=False)


def collect_sources(
    config_dir: Path,
    environment: str,
    environ: Mapping[str, str],
) -> RawConfiguration:
    """Merge base file, environment file, ``APP_*`` variables and ``PORT``, lowest precedence first."""
    layered = (
        LayeredConfig()
        .add_source(canonicalize_keys(load_file(config_dir / "base.yaml")))
        .add_source(canonicalize_keys(load_file(config_dir / f"{environment}.yaml")))
        .add_source(
            canonicalize_keys(
                load_environment(ENV_PREFIX, ENV_PREFIX_SEPARATOR, ENV_KEY_SEPARATOR, environ=environ)
            )
        )
        .add_default("port", environ.get("PORT"))
    )
    return layered.data


def build_configuration(
    config_dir: Path | str | None = None,
    environment: str | None = None,
    environ: Mapping[str, str] | None = None,
    load_env_file: bool = True,
) -> ResolvedConfiguration:
    if environ is None:
        if load_env_file:
            load_local_env()
        environ = os.environ
    resolved_environment = environment or resolve_environment(environ)
    resolved_dir = Path(config_dir) if config_dir is not None else resolve_config_dir(environ)

    raw = collect_sources(resolved_dir, resolved_environment, environ)
    result = validate_config(raw)
    if not result.ok:
        raise SchemaValidationError(result.issues)

    config = result.config
    get_logger("alumni_api.config").info(
        "configuration resolved",
        extra={
            "payload": {
                "environment": resolved_environment,
                "config_dir": str(resolved_dir),
                "configuration": redact(config),
            }
        },
    )
    return config
