"""
config.py - Configuration management for wflint

This module handles loading, validating, and managing configuration for the wflint tool.
"""

import copy
import logging
import os
from typing import Any, Dict, List, Optional, cast

import yaml

from ..rules.engine import RULE_CLASSES
from .diagnostic import Severity
from .errors import ConfigurationError
from .policy import DEFAULT_POLICY

logger = logging.getLogger(__name__)

# Registration order of the rule engine; configuration follows it.
RULE_IDS = [cls().rule_id for cls in RULE_CLASSES]

SECTIONS = {"severity_thresholds", "policy", "report"}

DEFAULT_CONFIG: Dict[str, Any] = {
    **{rule_id: True for rule_id in RULE_IDS},
    "severity_thresholds": {},
    "policy": DEFAULT_POLICY,
    "report": {
        "include_remediation": True,
        "color_output": True,
        "verbose": False,
        "summary": True,
    },
}


def get_config_paths() -> List[str]:
    """
    Get list of possible config file locations in priority order

    Returns:
        List of config file paths to check
    """
    paths = []

    paths.append(os.path.join(os.getcwd(), "wflint.yml"))
    paths.append(os.path.join(os.getcwd(), "wflint.yaml"))
    paths.append(os.path.join(os.getcwd(), ".wflint.yml"))
    paths.append(os.path.join(os.getcwd(), ".wflint.yaml"))

    home_dir = os.path.expanduser("~")
    paths.append(os.path.join(home_dir, ".wflint.yml"))
    paths.append(os.path.join(home_dir, ".config", "wflint", "config.yml"))

    if os.name == "posix":
        paths.append("/etc/wflint/config.yml")

    return paths


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two config dictionaries

    Args:
        base: Base configuration
        override: Configuration to override base

    Returns:
        Merged configuration dictionary
    """
    result = base.copy()

    for key, override_value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(override_value, dict):
            result[key] = merge_configs(result[key], override_value)
        else:
            result[key] = override_value

    return result


def _serialize_enums(obj: Any) -> Any:
    """Recursively convert Enum values to their underlying value for YAML output."""
    if isinstance(obj, dict):
        return {k: _serialize_enums(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_serialize_enums(v) for v in obj]
    if isinstance(obj, Severity):
        return obj.value
    return obj


def _validate_severity_thresholds(config: Dict[str, Any]) -> None:
    """Validate severity overrides and normalize them to Severity members."""

    if "severity_thresholds" in config:
        if not isinstance(config["severity_thresholds"], dict):
            raise ConfigurationError("'severity_thresholds' must be a dictionary")

        for rule, severity in list(config["severity_thresholds"].items()):
            if rule not in RULE_IDS:
                raise ConfigurationError(f"Unknown rule '{rule}' in 'severity_thresholds'")
            if isinstance(severity, Severity):
                continue
            try:
                config["severity_thresholds"][rule] = Severity(str(severity).upper())
            except ValueError:
                valid = ", ".join(level.value for level in Severity)
                raise ConfigurationError(
                    f"Invalid severity '{severity}' for rule '{rule}'. Must be one of: {valid}"
                )


def _string_list(value: Any, name: str) -> None:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"'policy.{name}' must be a list of strings")


def _validate_policy(config: Dict[str, Any]) -> None:
    """Validate analysis policy knobs"""

    if "policy" not in config:
        return
    policy = config["policy"]
    if not isinstance(policy, dict):
        raise ConfigurationError("'policy' must be a dictionary")

    for key, value in policy.items():
        if key not in DEFAULT_POLICY:
            raise ConfigurationError(f"Unknown policy option '{key}'")
        if key == "critical_requires_privileged_trigger" and not isinstance(value, bool):
            raise ConfigurationError(f"'policy.{key}' must be a boolean")
        if key == "timeout_min_steps":
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError("'policy.timeout_min_steps' must be a positive integer")
        if key in ("untrusted_paths", "sanitizing_functions", "allowed_hosts"):
            _string_list(value, key)


def _validate_report(config: Dict[str, Any]) -> None:
    if "report" not in config:
        return
    if not isinstance(config["report"], dict):
        raise ConfigurationError("'report' must be a dictionary")
    for key, value in config["report"].items():
        if not isinstance(value, bool):
            raise ConfigurationError(f"'report.{key}' must be a boolean")


def validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration structure and values"""

    for key in config.keys():
        if key not in RULE_IDS and key not in SECTIONS:
            raise ConfigurationError(f"Unknown configuration option '{key}'")

    for rule_id in RULE_IDS:
        if rule_id in config and not isinstance(config[rule_id], bool):
            raise ConfigurationError(f"Rule '{rule_id}' must be a boolean (true/false)")

    _validate_severity_thresholds(config)
    _validate_policy(config)
    _validate_report(config)


def _read_config_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing YAML configuration: {e}")
    except OSError as e:
        raise ConfigurationError(f"Error loading configuration: {e}")

    if user_config is None:
        return {}
    if not isinstance(user_config, dict):
        raise ConfigurationError(f"Configuration in {path} must be a mapping")
    validate_config(user_config)
    return user_config


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from file or use defaults

    Args:
        config_path: Path to configuration file, or None to auto-detect

    Returns:
        Loaded configuration dictionary

    Raises:
        ConfigurationError: If configuration file is invalid
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        if not os.path.exists(config_path):
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        logger.debug("loading configuration from %s", config_path)
        return merge_configs(config, _read_config_file(config_path))

    for path in get_config_paths():
        if os.path.exists(path):
            logger.debug("loading configuration from %s", path)
            return merge_configs(config, _read_config_file(path))

    return config


def generate_default_config(output_path: Optional[str] = None) -> str:
    """
    Generate default configuration YAML

    Args:
        output_path: Path to save default configuration to, or None to return as string

    Returns:
        Default configuration YAML

    Raises:
        ConfigurationError: If configuration cannot be saved
    """
    default_config_yaml = cast(
        str,
        yaml.dump(_serialize_enums(DEFAULT_CONFIG), default_flow_style=False, sort_keys=False),
    )

    if output_path:
        try:
            os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)

            with open(output_path, "w", encoding="utf-8") as f:
                f.write(default_config_yaml)
        except OSError as e:
            raise ConfigurationError(f"Error saving default configuration: {e}")

    return default_config_yaml


def disable_rules(config: Dict[str, Any], rules: List[str]) -> Dict[str, Any]:
    """
    Disable specific rules in a configuration

    Args:
        config: Configuration dictionary
        rules: List of rule IDs to disable

    Returns:
        Updated configuration dictionary

    Raises:
        ConfigurationError: If a rule ID is unknown
    """
    updated_config = config.copy()

    for rule in rules:
        if rule not in RULE_IDS:
            raise ConfigurationError(f"Unknown rule '{rule}'")
        updated_config[rule] = False

    return updated_config


def enabled_rule_ids(config: Dict[str, Any]) -> List[str]:
    """Rule IDs that the configuration leaves switched on, in registration order"""
    return [rule_id for rule_id in RULE_IDS if config.get(rule_id, True)]
