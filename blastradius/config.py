"""
Configuration management for the blastradius engine.

This module provides configuration loading with defaults for the type
equivalence table, confidence thresholds, change-plan thresholds and the
frontend/backend contract naming rules. Malformed configuration is fatal.
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError
from .types import Dimension, Layer

logger = logging.getLogger(__name__)


CONFIG_FILE_NAMES = [".blastradius.yml", ".blastradius.yaml", "blastradius.yml", "blastradius.yaml"]


DEFAULTS: Dict[str, Any] = {
    # Groups of type names considered equivalent across frontend and backend
    "type_equivalence": {
        "string": ["string", "String", "str", "text", "CharSequence"],
        "number": ["number", "Integer", "int", "Int", "Long", "long", "float", "Float",
                   "double", "Double", "BigDecimal", "decimal", "Decimal"],
        "boolean": ["boolean", "Boolean", "bool"],
        "date": ["Date", "datetime", "LocalDateTime", "Instant", "ZonedDateTime"],
        "object": ["object", "Object", "dict", "Dict", "Map", "Record", "any", "Any"],
    },
    # Minimum confidence an edge needs to be followed during impact analysis
    "confidence_thresholds": {
        "Reference": 0.0,
        "DataFlow": 0.5,
        "Contract": 0.0,
        "Config": 0.0,
        "Consistency": 0.5,
    },
    "plan_thresholds": {
        "full_sync_max_impacted": 10,
        "refactor_min_impacted": 40,
        "refactor_mismatch_ratio": 0.5,
    },
    "contracts": {
        # Explicit frontend type name -> backend type name table
        "mappings": {},
        # Naming-convention rules applied per layer before exact-name matching
        "naming_rules": {
            "frontend": {"strip_prefixes": [], "strip_suffixes": []},
            "backend": {"strip_prefixes": [], "strip_suffixes": []},
        },
        # Route prefixes removed before route paths are compared (e.g. "/api")
        "route_prefixes": [],
        # Which side is treated as declared when computing missing/extra fields
        "declared_side": "frontend",
    },
    "scan": {
        "jobs": 4,
        "extractor_patterns": {
            "manifest": ["*.impact.yml", "*.impact.yaml", "*.impact.json"],
            "yaml_config": ["config/*.yml", "config/*.yaml", "*.config.yml", "*.config.yaml"],
        },
    },
    "critical_dependents_threshold": 5,
}


@dataclass
class EngineConfig:
    """Configuration for the blastradius engine."""

    type_equivalence: Dict[str, List[str]] = None
    confidence_thresholds: Dict[str, float] = None
    plan_thresholds: Dict[str, Any] = None
    contracts: Dict[str, Any] = None
    scan: Dict[str, Any] = None
    critical_dependents_threshold: int = 5

    # Derived lookup: type name -> group name (built by validate_config)
    _type_groups: Dict[str, str] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        for name in ("type_equivalence", "confidence_thresholds", "plan_thresholds", "contracts", "scan"):
            if getattr(self, name) is None:
                setattr(self, name, copy.deepcopy(DEFAULTS[name]))
        validate_config(self)

    def threshold_for(self, dimension) -> float:
        return float(self.confidence_thresholds.get(Dimension(dimension).value, 0.0))

    def type_group(self, type_name: str) -> Optional[str]:
        return self._type_groups.get(type_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type_equivalence": self.type_equivalence,
            "confidence_thresholds": self.confidence_thresholds,
            "plan_thresholds": self.plan_thresholds,
            "contracts": self.contracts,
            "scan": self.scan,
            "critical_dependents_threshold": self.critical_dependents_threshold,
        }


def _require_mapping(value, where: str) -> Dict:
    if not isinstance(value, dict):
        raise ConfigError(f"'{where}' must be a mapping, got {type(value).__name__}")
    return value


def _require_str_list(value, where: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{where}' must be a list of strings")
    return value


def validate_config(config: EngineConfig) -> None:
    """
    Validate configuration tables and build derived lookups.

    Raises:
        ConfigError: if any table is malformed
    """
    groups: Dict[str, str] = {}
    for group, names in _require_mapping(config.type_equivalence, "type_equivalence").items():
        for name in _require_str_list(names, f"type_equivalence.{group}"):
            if name in groups and groups[name] != group:
                raise ConfigError(
                    f"Type '{name}' appears in equivalence groups '{groups[name]}' and '{group}'")
            groups[name] = group
    config._type_groups = groups

    valid_dimensions = {d.value for d in Dimension}
    for dim, value in _require_mapping(config.confidence_thresholds, "confidence_thresholds").items():
        if dim not in valid_dimensions:
            raise ConfigError(f"Unknown dimension '{dim}' in confidence_thresholds")
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not 0.0 <= value <= 1.0:
            raise ConfigError(f"confidence_thresholds.{dim} must be a number in [0, 1], got {value!r}")

    plan = _require_mapping(config.plan_thresholds, "plan_thresholds")
    for key in ("full_sync_max_impacted", "refactor_min_impacted"):
        value = plan.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"plan_thresholds.{key} must be a non-negative integer, got {value!r}")
    ratio = plan.get("refactor_mismatch_ratio")
    if not isinstance(ratio, (int, float)) or isinstance(ratio, bool) or not 0.0 <= ratio <= 1.0:
        raise ConfigError(f"plan_thresholds.refactor_mismatch_ratio must be in [0, 1], got {ratio!r}")

    contracts = _require_mapping(config.contracts, "contracts")
    mappings = _require_mapping(contracts.get("mappings", {}), "contracts.mappings")
    for frontend_name, backend_name in mappings.items():
        if not isinstance(frontend_name, str) or not isinstance(backend_name, str):
            raise ConfigError("contracts.mappings must map frontend type names to backend type names")
    rules = _require_mapping(contracts.get("naming_rules", {}), "contracts.naming_rules")
    for layer, rule in rules.items():
        if layer not in (Layer.FRONTEND.value, Layer.BACKEND.value):
            raise ConfigError(f"Unknown layer '{layer}' in contracts.naming_rules")
        rule = _require_mapping(rule, f"contracts.naming_rules.{layer}")
        for key in ("strip_prefixes", "strip_suffixes"):
            _require_str_list(rule.get(key, []), f"contracts.naming_rules.{layer}.{key}")
    _require_str_list(contracts.get("route_prefixes", []), "contracts.route_prefixes")
    if contracts.get("declared_side", "frontend") not in (Layer.FRONTEND.value, Layer.BACKEND.value):
        raise ConfigError("contracts.declared_side must be 'frontend' or 'backend'")

    threshold = config.critical_dependents_threshold
    if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 1:
        raise ConfigError(f"critical_dependents_threshold must be a positive integer, got {threshold!r}")

    scan = _require_mapping(config.scan, "scan")
    jobs = scan.get("jobs", 1)
    if not isinstance(jobs, int) or isinstance(jobs, bool) or jobs < 1:
        raise ConfigError(f"scan.jobs must be a positive integer, got {jobs!r}")
    for name, patterns in _require_mapping(scan.get("extractor_patterns", {}), "scan.extractor_patterns").items():
        _require_str_list(patterns, f"scan.extractor_patterns.{name}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def config_from_dict(data: Dict[str, Any]) -> EngineConfig:
    """
    Build a configuration from a (partial) mapping merged over the defaults.

    Mapping-valued sections are deep-merged, except ``type_equivalence`` and
    ``contracts.mappings`` which replace the defaults when given.
    """
    data = _require_mapping(data, "configuration")
    unknown = set(data) - set(DEFAULTS)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    merged = _deep_merge(DEFAULTS, data)
    if "type_equivalence" in data:
        merged["type_equivalence"] = copy.deepcopy(data["type_equivalence"])
    if isinstance(data.get("contracts"), dict) and "mappings" in data["contracts"]:
        merged["contracts"]["mappings"] = copy.deepcopy(data["contracts"]["mappings"])
    return EngineConfig(**merged)


def load_config(config_path: Optional[str] = None) -> EngineConfig:
    """
    Load configuration from file or use defaults.

    Args:
        config_path: Path to config file (YAML). If None, uses defaults.

    Returns:
        EngineConfig instance

    Raises:
        ConfigError: if the file cannot be read, is not valid YAML, or holds
            malformed tables
    """
    if not config_path:
        return get_default_config()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            file_config = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {config_path}: {e}") from e

    config = config_from_dict(file_config)
    logger.info(f"Loaded configuration from {config_path}")
    return config


def get_default_config() -> EngineConfig:
    """Get default configuration without loading from file."""
    return config_from_dict({})


def save_config(config: EngineConfig, config_path: str) -> None:
    """
    Save configuration to file.

    Args:
        config: EngineConfig to save
        config_path: Path where to save the config
    """
    directory = os.path.dirname(config_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, indent=2, sort_keys=True)


def find_config_file(start_path: str = ".") -> Optional[str]:
    """
    Find configuration file by walking up the directory tree.

    Looks for files in this order:
    1. .blastradius.yml
    2. .blastradius.yaml
    3. blastradius.yml
    4. blastradius.yaml

    Args:
        start_path: Directory to start searching from

    Returns:
        Path to config file or None if not found
    """
    current_path = os.path.abspath(start_path)

    while True:
        for config_name in CONFIG_FILE_NAMES:
            config_path = os.path.join(current_path, config_name)
            if os.path.exists(config_path):
                return config_path

        parent_path = os.path.dirname(current_path)
        if parent_path == current_path:
            break
        current_path = parent_path

    return None
