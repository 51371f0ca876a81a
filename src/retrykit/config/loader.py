"""
Configuration file loading.

Loads ``retry.yaml`` (plus ``retry.{env}.yaml``) and turns its ``policies``
and ``manager`` sections into a PolicyRegistry and RetryManager options.

Example ``retry.yaml``::

    manager:
      cleanup_interval_ms: 300000
      stale_threshold_ms: 600000

    policies:
      use_defaults: true
      default:
        max_retries: ${RETRY_MAX_RETRIES}
        base_delay_ms: 1000
      methods:
        GET: {max_retries: 5, base_delay_ms: 500}
      endpoints:
        /payments: {max_retries: 0}

    logging:
      level: INFO
      console_type: rich
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from retrykit.config.resolver import resolve_config
from retrykit.core.retry.policy import (
    DEFAULT_ENDPOINT_POLICIES,
    DEFAULT_METHOD_POLICIES,
    DEFAULT_RETRY_POLICY,
    PolicyOverride,
)
from retrykit.core.retry.registry import PolicyRegistry
from retrykit.exceptions import ConfigurationError

CONFIG_FILENAME = "retry.yaml"


class Config:
    """retrykit configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        self.data = data
        self.policies = data.get("policies", {}) or {}
        self.manager = data.get("manager", {}) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        value: Any = self.data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        """Dict-like access: config['key'] or config['nested.key']."""
        if "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        if "." in key:
            value: Any = self.data
            for k in key.split("."):
                if not isinstance(value, dict) or k not in value:
                    return False
                value = value[k]
            return True
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def validate(self) -> None:
        """
        Validate configuration structure and policy values.

        Raises:
            ConfigurationError: Listing every problem found
        """
        errors = []

        if not isinstance(self.policies, dict):
            errors.append(f"'policies' must be a mapping, got {type(self.policies).__name__}")
        else:
            for section in ("methods", "endpoints"):
                value = self.policies.get(section)
                if value is not None and not isinstance(value, dict):
                    errors.append(f"'policies.{section}' must be a mapping, got {type(value).__name__}")

        if not isinstance(self.manager, dict):
            errors.append(f"'manager' must be a mapping, got {type(self.manager).__name__}")

        if errors:
            raise ConfigurationError("\n".join(errors))

        # Build once to surface invalid policy values
        build_registry(self)
        build_manager_options(self)


def load_config(project_path: Path | None = None, env: str | None = None) -> Config:
    """
    Load retrykit configuration.

    Loads retry.yaml and retry.{env}.yaml, then substitutes environment
    variables and the {env} placeholder.

    Args:
        project_path: Directory containing retry.yaml (default: current directory)
        env: Environment name (dev, staging, prod)

    Returns:
        Config instance with merged configuration

    Raises:
        FileNotFoundError: If retry.yaml does not exist
        ConfigurationError: If a file is not valid YAML
    """
    if project_path is None:
        project_path = Path.cwd()

    base_config_path = project_path / CONFIG_FILENAME
    if not base_config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {base_config_path}\n"
            f"  Suggestion: Create a {CONFIG_FILENAME} file in your project root"
        )
    if not base_config_path.is_file():
        raise FileNotFoundError(f"Configuration path is not a file: {base_config_path}")

    config_data = _read_yaml(base_config_path)

    if env:
        env_config_path = project_path / f"retry.{env}.yaml"
        if env_config_path.exists():
            _merge_dict(config_data, _read_yaml(env_config_path))

    config_data = resolve_config(config_data, env or "dev")

    return Config(config_data)


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            if mark is not None:
                raise ConfigurationError(
                    f"Error parsing {path.name} at line {mark.line + 1}, column {mark.column + 1}:\n"
                    f"  {e}\n"
                    f"  File: {path}\n"
                    f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes",
                    details={"file": str(path), "line": mark.line + 1, "column": mark.column + 1},
                ) from e
            raise ConfigurationError(f"Error parsing {path.name}: {e}\n  File: {path}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path.name} must contain a mapping, got {type(data).__name__}")
    return data


def _merge_dict(base: dict, override: dict):
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value


def build_registry(config: Config | dict[str, Any]) -> PolicyRegistry:
    """
    Build a PolicyRegistry from the ``policies`` section.

    With ``use_defaults`` (the default) the configured default policy is
    layered onto the reference default, and configured method/endpoint
    overrides replace or extend the reference ones. Configured endpoints are
    scanned before the reference endpoints.

    Raises:
        ConfigurationError: If a policy value is invalid
    """
    data = config.data if isinstance(config, Config) else config
    policies = data.get("policies", {}) or {}

    use_defaults = policies.get("use_defaults", True)
    if isinstance(use_defaults, str):
        use_defaults = use_defaults.strip().lower() in ("1", "true", "yes", "on")

    try:
        default = DEFAULT_RETRY_POLICY.merged(PolicyOverride.from_dict(policies.get("default", {}) or {}))

        methods: dict[str, PolicyOverride] = dict(DEFAULT_METHOD_POLICIES) if use_defaults else {}
        for method, value in (policies.get("methods", {}) or {}).items():
            methods[str(method).upper()] = PolicyOverride.from_dict(value or {})

        configured = {
            str(endpoint): PolicyOverride.from_dict(value or {})
            for endpoint, value in (policies.get("endpoints", {}) or {}).items()
        }
        endpoints = dict(configured)
        if use_defaults:
            for endpoint, override in DEFAULT_ENDPOINT_POLICIES.items():
                endpoints.setdefault(endpoint, override)

        # Validates every override against the default
        return PolicyRegistry(default, endpoints, methods)
    except ValueError as e:
        raise ConfigurationError(f"Invalid retry policy configuration: {e}") from e


def build_manager_options(config: Config | dict[str, Any]) -> dict[str, Any]:
    """
    RetryManager keyword arguments from the ``manager`` section.

    Raises:
        ConfigurationError: If a value is not a positive number
    """
    data = config.data if isinstance(config, Config) else config
    manager = data.get("manager", {}) or {}

    options: dict[str, Any] = {}
    for key in ("cleanup_interval_ms", "stale_threshold_ms"):
        if manager.get(key) is None:
            continue
        try:
            value = float(manager[key])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for 'manager.{key}': {manager[key]!r}") from e
        if value <= 0:
            raise ConfigurationError(f"'manager.{key}' must be > 0")
        options[key] = value
    return options
