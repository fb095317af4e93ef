"""Layered configuration: YAML files, environment overrides and schema validation."""
