"""
blastradius: multi-dimensional change-impact analysis engine.

This package builds a typed dependency graph from extractor output and
answers which entities could break when a set of entities changes.
"""

from .types import (
    EntityKind, Dimension, Direction, Layer, ChangeKind,
    Location, ShapeField, Entity, Edge, ParseDiagnostic, ScanResult, make_entity_id
)

from .errors import (
    BlastRadiusError, InvalidEntityError, InvalidEdgeError, MergeError,
    DuplicateIdError, DanglingEdgeError, StaleScanError, DuplicateRouteError,
    ConfigError, StorageError
)

from .extractors import Extractor, ExtractorRole, ExtractorRegistry, run_extractor, default_registry

from .graph_store import GraphStore, GraphSnapshot, FileContribution, FileError, MergeOutcome

from .cancellation import CancellationToken, ScanStatus

from .consistency import (
    ConsistencyChecker, ConsistencyReport, ContractPair, Mismatch, MismatchKind, Finding,
    normalize_route_path
)

from .impact import ImpactAnalyzer, ImpactResult, ImpactedEntity

from .change_plan import ChangePlanGenerator, ChangePlan, Strategy, classify_plan

from .scanner import ScanReport, ScanState, scan_files

from .report import REPORT_VERSION, REPORT_SCHEMA, build_report, validate_report

from .config import (
    EngineConfig, load_config, get_default_config, save_config, find_config_file
)

from .engine import ImpactEngine

__all__ = [
    # Types
    "EntityKind", "Dimension", "Direction", "Layer", "ChangeKind",
    "Location", "ShapeField", "Entity", "Edge", "ParseDiagnostic", "ScanResult", "make_entity_id",

    # Errors
    "BlastRadiusError", "InvalidEntityError", "InvalidEdgeError", "MergeError",
    "DuplicateIdError", "DanglingEdgeError", "StaleScanError", "DuplicateRouteError",
    "ConfigError", "StorageError",

    # Extractors
    "Extractor", "ExtractorRole", "ExtractorRegistry", "run_extractor", "default_registry",

    # Graph
    "GraphStore", "GraphSnapshot", "FileContribution", "FileError", "MergeOutcome",
    "CancellationToken", "ScanStatus",

    # Analysis
    "ConsistencyChecker", "ConsistencyReport", "ContractPair", "Mismatch", "MismatchKind", "Finding",
    "normalize_route_path",
    "ImpactAnalyzer", "ImpactResult", "ImpactedEntity",
    "ChangePlanGenerator", "ChangePlan", "Strategy", "classify_plan",
    "ScanReport", "ScanState", "scan_files",
    "REPORT_VERSION", "REPORT_SCHEMA", "build_report", "validate_report",

    # Config
    "EngineConfig", "load_config", "get_default_config", "save_config", "find_config_file",

    "ImpactEngine",
]
