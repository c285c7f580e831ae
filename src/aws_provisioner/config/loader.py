"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from aws_provisioner.config.modules import ModuleExpansionError, expand_modules
from aws_provisioner.config.schema import Config
from aws_provisioner.engine.errors import ParseError

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from aws_provisioner.resources.base import Resource


class ConfigError(ParseError):
    """Raised for configuration loading / validation errors."""


# Field name → environment variables, first match wins.
_PROVIDER_ENV_MAP: dict[str, tuple[str, ...]] = {
    "region": ("AWS_REGION", "AWS_DEFAULT_REGION"),
    "profile": ("AWS_PROFILE",),
    "endpoint_url": ("AWS_ENDPOINT_URL",),
}

_VAR_TOKEN_RE = re.compile(r"\$\$\{|\$\{var\.([^}]*)\}")
_WHOLE_VAR_RE = re.compile(r"^\$\{var\.([^}]*)\}$")


def _resolve_provider(raw_provider: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve provider fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = dict(raw_provider)
    for field, env_keys in _PROVIDER_ENV_MAP.items():
        val = raw_provider.get(field)
        if val is None:
            val = next((os.environ[k] for k in env_keys if os.environ.get(k)), None)
        if val is None:
            val = next((dotenv_vals[k] for k in env_keys if dotenv_vals.get(k)), None)
        if val is not None:
            resolved[field] = val

    return resolved


def _lookup_variable(name: str, variables: Mapping[str, Any]) -> Any:
    if name not in variables:
        raise ConfigError(f"Undefined variable '{name}' (referenced as ${{var.{name}}})")
    return variables[name]


def _substitute_variables(value: Any, variables: Mapping[str, Any]) -> Any:
    """Replace ``${var.NAME}`` in every string of *value*.

    A string that is exactly one variable takes the variable's value (and
    type); embedded variables are rendered as text.  ``$${`` escapes are left
    for the expression parser.
    """
    if isinstance(value, str):
        whole = _WHOLE_VAR_RE.match(value)
        if whole is not None:
            return _lookup_variable(whole.group(1), variables)

        def _replace(match: re.Match[str]) -> str:
            if match.group(0) == "$${":
                return match.group(0)
            return str(_lookup_variable(match.group(1), variables))

        return _VAR_TOKEN_RE.sub(_replace, value)
    if isinstance(value, dict):
        return {k: _substitute_variables(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_variables(v, variables) for v in value]
    return value


def _validate_unique_names(resources: list[Resource]) -> list[str]:
    """Check that no two resources of a type claim the same AWS-side name."""
    groups: dict[str, dict[str, str]] = {}  # resource_type → {aws name: first_address}
    errors: list[str] = []
    for r in resources:
        aws_name = getattr(r, "aws_name", None)
        if aws_name is None:
            continue
        seen = groups.setdefault(r.resource_type, {})
        if aws_name in seen:
            errors.append(
                f"Duplicate {r.resource_type} name '{aws_name}': "
                f"found in both {seen[aws_name]} and {r.address}"
            )
        else:
            seen[aws_name] = r.address
    return errors


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Raises:
        ConfigError: On YAML parse errors, undefined variables, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    variables = raw.get("variables") or {}
    if not isinstance(variables, dict):
        raise ConfigError(f"{path}: 'variables' must be a mapping")
    raw = {
        k: v if k == "variables" else _substitute_variables(v, variables) for k, v in raw.items()
    }

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    if not config.state_path.is_absolute():
        config.state_path = config.config_dir / config.state_path

    if config.modules:
        logger.debug("Expanding %d module(s)", len(config.modules))
        try:
            config._module_resources = expand_modules(config.modules, config.config_dir)
        except ModuleExpansionError as exc:
            raise ConfigError(str(exc)) from exc

    errors = _validate_unique_names(config.resources)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
