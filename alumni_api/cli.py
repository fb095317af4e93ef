"""CLI entry point for the alumni API."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Any, Sequence

from alumni_api.config.loader import (
    CONFIG_DIR_VARIABLE,
    ENVIRONMENT_VARIABLE,
    build_configuration,
    collect_sources,
    load_local_env,
    resolve_config_dir,
    resolve_environment,
)
from alumni_api.config.schema import redact, validate_config
from alumni_api.core.logging import configure_logging, get_logger
from alumni_api.server.app import effective_workers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="alumni-api")
    subparsers = parser.add_subparsers(dest="command", required=True)

    config_parser = subparsers.add_parser("config", help="Print the resolved configuration")
    check_parser = subparsers.add_parser("check", help="Validate configuration and list every violation")
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", type=str, default="0.0.0.0")

    for sub in (config_parser, check_parser, serve_parser):
        sub.add_argument("--config-dir", type=Path, default=None)
        sub.add_argument("--environment", type=str, default=None)

    return parser


def _apply_overrides(config_dir: Path | None, environment: str | None) -> None:
    # Exported so uvicorn worker processes resolve the same sources.
    if config_dir is not None:
        os.environ[CONFIG_DIR_VARIABLE] = str(config_dir)
    if environment:
        os.environ[ENVIRONMENT_VARIABLE] = environment


def cmd_config(config_dir: Path | None, environment: str | None) -> int:
    _apply_overrides(config_dir, environment)
    config = build_configuration()
    payload: dict[str, Any] = {
        "environment": resolve_environment(),
        "configuration": redact(config),
        "database_target": {
            key: value for key, value in config.database_options().items() if key != "password"
        },
    }
    print(json.dumps(payload, indent=2))
    return 0


def cmd_check(config_dir: Path | None, environment: str | None) -> int:
    _apply_overrides(config_dir, environment)
    load_local_env()
    raw = collect_sources(resolve_config_dir(), resolve_environment(), os.environ)
    result = validate_config(raw)
    report = {
        "ok": result.ok,
        "issues": [{"path": issue.path, "message": issue.message} for issue in result.issues],
    }
    print(json.dumps(report, indent=2))
    return 0 if result.ok else 1


def cmd_serve(config_dir: Path | None, environment: str | None, *, host: str) -> int:
    import uvicorn

    _apply_overrides(config_dir, environment)
    config = build_configuration()
    configure_logging(config.logs)
    logger = get_logger("alumni_api.cli")

    cpu_count = os.cpu_count() or 1
    workers = effective_workers(config.workers, cpu_count)
    if config.workers > cpu_count:
        logger.warning(
            f"requested {config.workers} workers but only {cpu_count} CPUs are available; using {workers}"
        )
    logger.info(
        "starting server",
        extra={"payload": {"host": host, "port": config.port, "workers": workers, "tenant": config.tenant}},
    )
    uvicorn.run(
        "alumni_api.server.app:build_app",
        factory=True,
        host=host,
        port=int(config.port),
        workers=workers,
        log_level=(os.environ.get("LOG_LEVEL") or "info").lower(),
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "config":
        return cmd_config(args.config_dir, args.environment)
    if args.command == "check":
        return cmd_check(args.config_dir, args.environment)
    if args.command == "serve":
        return cmd_serve(args.config_dir, args.environment, host=args.host)

    parser.error(f"unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
