"""Configuration error taxonomy."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from alumni_api.config.schema import ConfigIssue


class ConfigurationError(Exception):
    """Base class for every fatal configuration failure."""


class SourceReadError(ConfigurationError):
    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"unable to read configuration source {self.path}: {reason}")


class InvalidMergerConfiguration(ConfigurationError):
    pass


class SchemaValidationError(ConfigurationError):
    def __init__(self, issues: Sequence[ConfigIssue]) -> None:
        self.issues = list(issues)
        details = "\n  ".join(issue.format() for issue in self.issues)
        super().__init__(f"configuration validation failed:\n  {details}")
