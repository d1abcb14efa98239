"""
Versioned report output and JSON schema validation.

The report is the contract with downstream tooling (reporting UI, CLI): the
graph, contract pairs with mismatches, impact results, change plans,
diagnostics and the gaps of a partially failed scan.
"""

from typing import Any, Dict, Iterable, List, Optional

import jsonschema

from .cancellation import ScanStatus

# Current report schema version
REPORT_VERSION = "1"
ENGINE_VERSION = "0.1.0"

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

_DIMENSIONS = ["Reference", "DataFlow", "Contract", "Config", "Consistency"]

EDGE_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "from": {"type": "string"},
        "to": {"type": "string"},
        "dimension": {"type": "string", "enum": _DIMENSIONS},
        "direction": {"type": "string", "enum": ["forward", "backward"]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
    "required": ["from", "to", "dimension", "direction", "confidence"],
    "additionalProperties": False,
}

ENTITY_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "kind": {"type": "string", "enum": ["Function", "Type", "ApiRoute", "ConfigKey", "Test", "DataSink"]},
        "language": {"type": "string"},
        "name": {"type": "string"},
        "location": {
            "type": "object",
            "properties": {
                "file": {"type": "string"},
                "start_line": {"type": "integer", "minimum": 0},
                "end_line": {"type": "integer", "minimum": 0},
            },
            "required": ["file", "start_line", "end_line"],
        },
        "layer": {"type": ["string", "null"], "enum": ["frontend", "backend", "shared", None]},
        "shape": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "type": {"type": "string"},
                    "required": {"type": "boolean"},
                    "source": {"type": "string"},
                },
                "required": ["name", "type", "required"],
            },
        },
        "metadata": {"type": "object"},
    },
    "required": ["id", "kind", "language", "location"],
}

MISMATCH_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "kind": {"type": "string", "enum": [
            "MissingField", "ExtraField", "TypeMismatch", "ValidationMismatch",
            "RouteMismatch", "StatusCodeMismatch",
        ]},
        "field": {"type": ["string", "null"]},
        "frontend_detail": {"type": ["string", "null"]},
        "backend_detail": {"type": ["string", "null"]},
    },
    "required": ["kind"],
}

CONTRACT_PAIR_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "family": {"type": "string", "enum": ["route", "shape"]},
        "key": {"type": "string"},
        "frontend": {"type": "string"},
        "backend": {"type": "string"},
        "match_basis": {"type": "string", "enum": ["route", "route_path", "mapping", "convention", "name"]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "mismatches": {"type": "array", "items": MISMATCH_JSON_SCHEMA},
    },
    "required": ["family", "key", "frontend", "backend", "match_basis", "confidence", "mismatches"],
}

FINDING_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "rule": {"type": "string"},
        "message": {"type": "string"},
        "severity": {"type": "string", "enum": ["info", "warn", "error"]},
        "entity_ids": _STRING_LIST,
        "meta": {"type": "object"},
    },
    "required": ["rule", "message", "severity", "entity_ids"],
}

IMPACT_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "changes": {
            "type": "object",
            "additionalProperties": {"type": "string", "enum": ["Added", "Removed", "Modified"]},
        },
        "status": {"type": "string", "enum": [s.value for s in ScanStatus]},
        "impacted": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "entity_id": {"type": "string"},
                    "layer": {"type": "integer", "minimum": 1},
                    "dimension": {"type": "string", "enum": _DIMENSIONS},
                    "root": {"type": "string"},
                    "chain": {"type": "array", "items": EDGE_JSON_SCHEMA, "minItems": 1},
                },
                "required": ["entity_id", "layer", "dimension", "root", "chain"],
            },
        },
        "by_dimension": {"type": "object", "additionalProperties": _STRING_LIST},
        "unknown_ids": _STRING_LIST,
    },
    "required": ["changes", "status", "impacted", "by_dimension", "unknown_ids"],
}

PLAN_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "strategy": {"type": "string", "enum": ["full-sync", "progressive-compatibility", "refactor-flagged"]},
        "reasons": _STRING_LIST,
        "impacted_count": {"type": "integer", "minimum": 0},
        "sections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "section": {"type": "string", "enum": ["Contract", "DataFlow", "Reference", "Test"]},
                    "steps": {"type": "array", "items": {"type": "object"}},
                },
                "required": ["section", "steps"],
            },
        },
    },
    "required": ["strategy", "reasons", "impacted_count", "sections"],
}

DIAGNOSTIC_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "file_path": {"type": "string"},
        "message": {"type": "string"},
        "severity": {"type": "string", "enum": ["error", "warning"]},
        "line": {"type": ["integer", "null"]},
        "extractor": {"type": ["string", "null"]},
    },
    "required": ["file_path", "message", "severity"],
}

REPORT_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "blastradius.report_version": {"type": "string", "const": REPORT_VERSION},
        "engine_version": {"type": "string"},
        "status": {"type": "string", "enum": [s.value for s in ScanStatus]},
        "graph": {
            "type": "object",
            "properties": {
                "version": {"type": "integer", "minimum": 0},
                "entities": {"type": "array", "items": ENTITY_JSON_SCHEMA},
                "edges": {"type": "array", "items": EDGE_JSON_SCHEMA},
                "stats": {"type": "object"},
            },
            "required": ["version", "entities", "edges", "stats"],
        },
        "contracts": {
            "type": "object",
            "properties": {
                "pairs": {"type": "array", "items": CONTRACT_PAIR_JSON_SCHEMA},
                "findings": {"type": "array", "items": FINDING_JSON_SCHEMA},
            },
            "required": ["pairs", "findings"],
        },
        "impact": {"type": "array", "items": IMPACT_JSON_SCHEMA},
        "plans": {"type": "array", "items": PLAN_JSON_SCHEMA},
        "diagnostics": {"type": "array", "items": DIAGNOSTIC_JSON_SCHEMA},
        "gaps": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"file_path": {"type": "string"}, "reason": {"type": "string"}},
                "required": ["file_path", "reason"],
            },
        },
    },
    "required": [
        "blastradius.report_version", "engine_version", "status", "graph",
        "contracts", "impact", "plans", "diagnostics", "gaps",
    ],
    "additionalProperties": False,
}


def build_report(snapshot, consistency=None, impacts: Iterable = (), plans: Iterable = (),
                 scan=None, status: Optional[ScanStatus] = None) -> Dict[str, Any]:
    """
    Build the report document.

    Args:
        snapshot: GraphSnapshot the results were computed on
        consistency: Optional ConsistencyReport
        impacts: ImpactResults, one per change set
        plans: ChangePlans, in the same order as impacts
        scan: Optional ScanReport or ScanState supplying diagnostics, gaps and
            the latest scan status
        status: Overall status; derived from scan and impacts when omitted

    Returns:
        Report dictionary (JSON-serializable)
    """
    impacts = list(impacts)
    plans = list(plans)
    if status is None:
        cancelled = (scan is not None and scan.status == ScanStatus.CANCELLED) or any(
            i.status == ScanStatus.CANCELLED for i in impacts)
        status = ScanStatus.CANCELLED if cancelled else ScanStatus.COMPLETED

    return {
        "blastradius.report_version": REPORT_VERSION,
        "engine_version": ENGINE_VERSION,
        "status": ScanStatus(status).value,
        "graph": {
            "version": snapshot.version,
            "entities": [e.to_dict() for e in snapshot.entities()],
            "edges": [e.to_dict() for e in snapshot.edges()],
            "stats": snapshot.stats(),
        },
        "contracts": {
            "pairs": [p.to_dict() for p in consistency.pairs] if consistency else [],
            "findings": [f.to_dict() for f in consistency.findings] if consistency else [],
        },
        "impact": [i.to_dict() for i in impacts],
        "plans": [p.to_dict() for p in plans],
        "diagnostics": [d.to_dict() for d in scan.diagnostics] if scan else [],
        "gaps": scan.gaps if scan else [],
    }


def validate_report(report: Dict[str, Any]) -> List[str]:
    """
    Validate a report against REPORT_SCHEMA.

    Returns:
        List of validation errors (empty if valid)
    """
    validator = jsonschema.Draft7Validator(REPORT_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(report), key=lambda e: [str(p) for p in e.absolute_path]):
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        errors.append(f"{location}: {error.message}")
    return errors
