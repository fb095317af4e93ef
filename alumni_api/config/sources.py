"""Layered configuration sources and deep merging."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from alumni_api.config.errors import InvalidMergerConfiguration, SourceReadError


RawConfiguration = dict[str, Any]


def load_file(path: Path | str) -> RawConfiguration:
    path = Path(path)
    if not path.exists():
        raise SourceReadError(path, "file does not exist")
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise SourceReadError(path, f"malformed yaml: {exc}") from exc
    except OSError as exc:
        raise SourceReadError(path, str(exc)) from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SourceReadError(path, f"top-level value must be a mapping, got {type(raw).__name__}")
    return raw


def snake_to_camel(segment: str, separator: str = "_") -> str:
    parts = [part for part in segment.split(separator) if part]
    if not parts:
        return segment
    head, *tail = parts
    return head.lower() + "".join(part[:1].upper() + part[1:].lower() for part in tail)


def load_environment(
    prefix: str,
    prefix_separator: str,
    key_separator: str,
    snake_case_separator: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> RawConfiguration:
    """Fold ``<prefix><prefix_separator>A<key_separator>B=value`` variables into ``{"A": {"B": value}}``.

    With ``snake_case_separator`` set, every segment is converted from
    snake_case to camelCase using that separator.
    """
    if not key_separator:
        raise InvalidMergerConfiguration("key separator must be a non-empty string")
    if snake_case_separator is not None and snake_case_separator == key_separator:
        raise InvalidMergerConfiguration(
            f"key separator and snake-case separator must differ, both are {key_separator!r}"
        )

    source = os.environ if environ is None else environ
    marker = f"{prefix}{prefix_separator}"
    config: RawConfiguration = {}

    for name in sorted(source):
        if not name.startswith(marker):
            continue
        segments = name[len(marker):].split(key_separator)
        if not segments[0] or any(not segment for segment in segments):
            continue
        if snake_case_separator is not None:
            segments = [snake_to_camel(segment, snake_case_separator) for segment in segments]

        node = config
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = source[name]
    return config


def merge(target: RawConfiguration, source: Mapping[str, Any]) -> RawConfiguration:
    for key, value in source.items():
        if isinstance(value, Mapping):
            nested = target.get(key)
            if not isinstance(nested, dict):
                nested = {}
                target[key] = nested
            merge(nested, value)
        elif isinstance(value, list):
            target[key] = list(value)
        else:
            target[key] = value
    return target


class LayeredConfig:
    """Accumulates configuration sources; each added source overrides the previous ones."""

    def __init__(self) -> None:
        self.data: RawConfiguration = {}

    def add_source(self, source: Mapping[str, Any]) -> LayeredConfig:
        merge(self.data, source)
        return self

    def add_default(self, name: str, value: Any) -> LayeredConfig:
        if value:
            self.data[name] = value
        return self
