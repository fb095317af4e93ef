"""Typed configuration and the validation pass that produces it."""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Mapping
from urllib.parse import urlparse

from alumni_api.config.sources import RawConfiguration, merge


DEFAULT_WORKERS = -1
DEFAULT_DATABASE_PORT = 3306
DEFAULT_CONNECTION_LIMIT = 10
MIN_PORT = 1000
INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")
REDACTED = "***"

TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}

# Section name -> keys of that section; ``None`` marks a top-level scalar.
SCHEMA_KEYS: dict[str, frozenset[str] | None] = {
    "port": None,
    "tenant": None,
    "workers": None,
    "database": frozenset({"host", "username", "password", "port", "connectionLimit"}),
    "logs": frozenset(
        {"terminal", "dailyRotateFile", "loki", "lokiUrl", "lokiAppName", "lokiEndpointToken"}
    ),
}

_MISSING = object()


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    host: str
    username: str
    password: str
    port: int = DEFAULT_DATABASE_PORT
    connection_limit: int = DEFAULT_CONNECTION_LIMIT


@dataclass(frozen=True, slots=True)
class LogsConfig:
    terminal: bool = False
    daily_rotate_file: bool = False
    loki: bool = False
    loki_url: str | None = None
    loki_app_name: str | None = None
    loki_endpoint_token: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedConfiguration:
    port: int
    tenant: str
    database: DatabaseConfig
    logs: LogsConfig = field(default_factory=LogsConfig)
    workers: int = DEFAULT_WORKERS

    def database_options(self) -> dict[str, Any]:
        """Connection pool options; the tenant doubles as the database name."""
        return {
            "host": self.database.host,
            "port": self.database.port,
            "user": self.database.username,
            "password": self.database.password,
            "database": self.tenant,
            "connection_limit": self.database.connection_limit,
        }


@dataclass(frozen=True, slots=True)
class ConfigIssue:
    path: str
    message: str

    def format(self) -> str:
        return f"{self.path}:{self.message}"


@dataclass(slots=True)
class ValidationResult:
    config: ResolvedConfiguration | None = None
    issues: list[ConfigIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.config is not None and not self.issues

    def format(self) -> str:
        return "\n".join(issue.format() for issue in self.issues)


def _normalize_key(key: str) -> str:
    return key.replace("_", "").lower()


def canonicalize_keys(
    raw: Mapping[str, Any],
    keys: Mapping[str, frozenset[str] | None] | frozenset[str] = SCHEMA_KEYS,
) -> RawConfiguration:
    """Rename keys matching a schema key (ignoring case and underscores) to the schema spelling."""
    known = {_normalize_key(name): name for name in keys}
    result: RawConfiguration = {}
    for key, value in raw.items():
        name = known.get(_normalize_key(str(key)), key)
        nested_keys = keys.get(name) if isinstance(keys, Mapping) else None
        if isinstance(value, Mapping):
            if nested_keys is not None:
                value = canonicalize_keys(value, nested_keys)
            existing = result.get(name)
            if isinstance(existing, dict):
                merge(existing, value)
                continue
            result[name] = merge({}, value)
        else:
            result[name] = value
    return result


class _Validator:
    def __init__(self) -> None:
        self.issues: list[ConfigIssue] = []

    def fail(self, path: str, message: str) -> None:
        self.issues.append(ConfigIssue(path=path, message=message))

    def section(self, raw: Mapping[str, Any], key: str) -> Mapping[str, Any] | None:
        value = raw.get(key, _MISSING)
        if value is _MISSING or value is None:
            self.fail(key, "required")
            return None
        if not isinstance(value, Mapping):
            self.fail(key, f"expected object, received {_type_name(value)}")
            return None
        return value

    def integer(
        self,
        raw: Mapping[str, Any],
        key: str,
        path: str,
        *,
        minimum: int | None = None,
        default: Any = _MISSING,
    ) -> int | None:
        value = raw.get(key, _MISSING)
        if value is _MISSING or value is None:
            if default is _MISSING:
                self.fail(path, "required")
                return None
            return default
        parsed: int | None = None
        if isinstance(value, bool):
            parsed = None
        elif isinstance(value, int):
            parsed = value
        elif isinstance(value, float) and value.is_integer():
            parsed = int(value)
        elif isinstance(value, str) and INTEGER_PATTERN.fullmatch(value.strip()):
            parsed = int(value.strip())
        if parsed is None:
            self.fail(path, f"expected integer, received {_describe(value)}")
            return None
        if minimum is not None and parsed < minimum:
            self.fail(path, f"must be greater than or equal to {minimum}")
            return None
        return parsed

    def boolean(self, raw: Mapping[str, Any], key: str, path: str, *, default: bool = False) -> bool | None:
        value = raw.get(key, _MISSING)
        if value is _MISSING or value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in TRUE_STRINGS:
                return True
            if normalized in FALSE_STRINGS:
                return False
        self.fail(path, f"expected boolean, received {_describe(value)}")
        return None

    def string(
        self,
        raw: Mapping[str, Any],
        key: str,
        path: str,
        *,
        required: bool = True,
        non_empty: bool = False,
    ) -> str | None:
        value = raw.get(key, _MISSING)
        if value is _MISSING or value is None:
            if required:
                self.fail(path, "required")
            return None
        if not isinstance(value, str):
            self.fail(path, f"expected string, received {_type_name(value)}")
            return None
        if not value.strip():
            if non_empty:
                self.fail(path, "must not be empty")
                return None
            if not required:
                return None
        return value

    def url(self, raw: Mapping[str, Any], key: str, path: str) -> str | None:
        value = self.string(raw, key, path, required=False)
        if value is None:
            return None
        parsed = urlparse(value.strip())
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            self.fail(path, "invalid url")
            return None
        return value.strip()


def _type_name(value: Any) -> str:
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, bool):
        return "boolean"
    return type(value).__name__


def _describe(value: Any) -> str:
    if isinstance(value, str):
        return repr(value)
    return _type_name(value)


def _validate_database(validator: _Validator, raw: Mapping[str, Any]) -> DatabaseConfig | None:
    section = validator.section(raw, "database")
    if section is None:
        return None
    host = validator.string(section, "host", "database.host")
    username = validator.string(section, "username", "database.username")
    password = validator.string(section, "password", "database.password")
    port = validator.integer(section, "port", "database.port", minimum=MIN_PORT, default=DEFAULT_DATABASE_PORT)
    connection_limit = validator.integer(
        section,
        "connectionLimit",
        "database.connectionLimit",
        default=DEFAULT_CONNECTION_LIMIT,
    )
    if None in (host, username, password, port, connection_limit):
        return None
    return DatabaseConfig(
        host=host,
        username=username,
        password=password,
        port=port,
        connection_limit=connection_limit,
    )


def _validate_logs(validator: _Validator, raw: Mapping[str, Any]) -> LogsConfig | None:
    section = validator.section(raw, "logs")
    if section is None:
        return None
    issues_before = len(validator.issues)
    terminal = validator.boolean(section, "terminal", "logs.terminal")
    daily_rotate_file = validator.boolean(section, "dailyRotateFile", "logs.dailyRotateFile")
    loki = validator.boolean(section, "loki", "logs.loki")
    loki_url = validator.url(section, "lokiUrl", "logs.lokiUrl")
    loki_app_name = validator.string(section, "lokiAppName", "logs.lokiAppName", required=False)
    loki_endpoint_token = validator.string(
        section, "lokiEndpointToken", "logs.lokiEndpointToken", required=False
    )

    # Refinement: runs once the per-field checks have been recorded.
    url_field_failed = any(issue.path == "logs.lokiUrl" for issue in validator.issues[issues_before:])
    if loki and loki_url is None and not url_field_failed:
        validator.fail("logs.lokiUrl", "lokiUrl is required when loki is true")
        return None
    if len(validator.issues) > issues_before:
        return None
    return LogsConfig(
        terminal=bool(terminal),
        daily_rotate_file=bool(daily_rotate_file),
        loki=bool(loki),
        loki_url=loki_url,
        loki_app_name=loki_app_name,
        loki_endpoint_token=loki_endpoint_token,
    )


def validate_config(raw: Mapping[str, Any]) -> ValidationResult:
    """Validate and coerce a merged raw mapping.

    Every violation is collected; bad input never raises. Callers decide
    whether a failed result aborts startup.
    """
    validator = _Validator()
    if not isinstance(raw, Mapping):
        validator.fail("(root)", f"expected object, received {_type_name(raw)}")
        return ValidationResult(issues=validator.issues)

    port = validator.integer(raw, "port", "port", minimum=MIN_PORT)
    tenant = validator.string(raw, "tenant", "tenant", non_empty=True)
    workers = validator.integer(raw, "workers", "workers", default=DEFAULT_WORKERS)
    database = _validate_database(validator, raw)
    logs = _validate_logs(validator, raw)

    if validator.issues:
        return ValidationResult(issues=validator.issues)
    return ValidationResult(
        config=ResolvedConfiguration(
            port=port,
            tenant=tenant,
            workers=workers,
            database=database,
            logs=logs,
        )
    )


def redact(config: ResolvedConfiguration) -> dict[str, Any]:
    return {
        "port": config.port,
        "tenant": config.tenant,
        "workers": config.workers,
        "database": {
            "host": config.database.host,
            "username": config.database.username,
            "password": REDACTED,
            "port": config.database.port,
            "connectionLimit": config.database.connection_limit,
        },
        "logs": {
            "terminal": config.logs.terminal,
            "dailyRotateFile": config.logs.daily_rotate_file,
            "loki": config.logs.loki,
            "lokiUrl": config.logs.loki_url,
            "lokiAppName": config.logs.loki_app_name,
            "lokiEndpointToken": REDACTED if config.logs.loki_endpoint_token else None,
        },
    }
