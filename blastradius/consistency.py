"""
Contract matching and frontend/backend consistency checking.

Contract entities (ApiRoute entities and shaped Type entities with a frontend
or backend layer) are partitioned into families:

- route family: ``(normalized path, HTTP method)``
- shape family: a cross-reference name resolved from the configured mapping
  table, the entity's ``contract_name``, or the per-layer naming rules

Every family with both sides yields ContractPairs whose mismatches are the
symmetric difference of the two shapes plus a type/required comparison of the
shared fields. Pairs and findings are derived views: recomputed from a
snapshot on every query and never stored.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from .config import EngineConfig, get_default_config
from .errors import DuplicateRouteError
from .types import Entity, EntityKind, Layer

logger = logging.getLogger(__name__)


Severity = Literal["info", "warn", "error"]


class MismatchKind(str, Enum):
    MISSING_FIELD = "MissingField"
    EXTRA_FIELD = "ExtraField"
    TYPE_MISMATCH = "TypeMismatch"
    VALIDATION_MISMATCH = "ValidationMismatch"
    ROUTE_MISMATCH = "RouteMismatch"
    STATUS_CODE_MISMATCH = "StatusCodeMismatch"


class ContractFamily(str, Enum):
    ROUTE = "route"
    SHAPE = "shape"


# Confidence of a pair by how its members were matched
MATCH_CONFIDENCE = {
    "route": 1.0,
    "mapping": 1.0,
    "convention": 0.9,
    "name": 0.75,
    "route_path": 0.6,
}

_BASIS_STRENGTH = ("mapping", "convention", "name")


@dataclass(frozen=True)
class Mismatch:
    """A disagreement between the two sides of a ContractPair."""
    kind: MismatchKind
    field: Optional[str] = None
    frontend_detail: Optional[str] = None
    backend_detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "field": self.field,
            "frontend_detail": self.frontend_detail,
            "backend_detail": self.backend_detail,
        }


@dataclass(frozen=True)
class ContractPair:
    """One frontend and one backend contract entity of the same family."""
    family: ContractFamily
    key: str
    frontend: str
    backend: str
    match_basis: str
    confidence: float
    mismatches: Tuple[Mismatch, ...] = ()

    @property
    def has_mismatches(self) -> bool:
        return bool(self.mismatches)

    def mismatch_kinds(self) -> List[MismatchKind]:
        return sorted({m.kind for m in self.mismatches}, key=lambda k: k.value)

    def touches(self, entity_ids) -> bool:
        return self.frontend in entity_ids or self.backend in entity_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family.value,
            "key": self.key,
            "frontend": self.frontend,
            "backend": self.backend,
            "match_basis": self.match_basis,
            "confidence": self.confidence,
            "mismatches": [m.to_dict() for m in self.mismatches],
        }


@dataclass(frozen=True)
class Finding:
    """A contract problem that is not a mismatch (orphans, duplicate registrations)."""
    rule: str
    message: str
    severity: Severity
    entity_ids: Tuple[str, ...] = ()
    meta: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "message": self.message,
            "severity": self.severity,
            "entity_ids": list(self.entity_ids),
            "meta": dict(self.meta or {}),
        }


@dataclass
class ConsistencyReport:
    """Pairs and findings computed from one snapshot."""
    pairs: List[ContractPair] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    declared_side: str = Layer.FRONTEND.value
    snapshot_version: int = 0

    def mismatches(self) -> List[Mismatch]:
        return [m for pair in self.pairs for m in pair.mismatches]

    def pairs_for(self, entity_id: str) -> List[ContractPair]:
        return [p for p in self.pairs if p.touches((entity_id,))]

    def findings_of(self, rule: str) -> List[Finding]:
        return [f for f in self.findings if f.rule == rule]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "declared_side": self.declared_side,
            "snapshot_version": self.snapshot_version,
            "pairs": [p.to_dict() for p in self.pairs],
            "findings": [f.to_dict() for f in self.findings],
        }


# ================================
# Route paths and types
# ================================

_SCHEME_HOST = re.compile(r"^[a-z][a-z0-9+.-]*://[^/]+")
_PARAM_SEGMENT = re.compile(
    r"^(\{[^}]*\}|:[^/]+|<[^>]+>|\[[^\]]+\]|\$\{[^}]*\})$"
)


def normalize_route_path(path: str, prefixes: Sequence[str] = ()) -> str:
    """
    Normalize a route path for family matching.

    Strips scheme/host, query string and fragment, lowercases, collapses
    repeated slashes, removes the first matching configured prefix, drops the
    trailing slash, and replaces parameter segments (``{id}``, ``:id``,
    ``<int:id>``, ``[id]``, ``${id}``) with ``{}``.

    >>> normalize_route_path("/API/Users/:id/?x=1", ["/api"])
    '/users/{}'
    """
    path = (path or "").strip()
    path = path.split("?", 1)[0].split("#", 1)[0]
    path = _SCHEME_HOST.sub("", path.lower())
    path = "/" + re.sub(r"/+", "/", path).strip("/")

    for prefix in prefixes:
        prefix = "/" + prefix.lower().strip("/")
        if prefix == "/":
            continue
        if path == prefix or path.startswith(prefix + "/"):
            path = path[len(prefix):] or "/"
            break

    segments = ["{}" if _PARAM_SEGMENT.match(s) else s for s in path.split("/") if s]
    return "/" + "/".join(segments)


_OPTIONAL_WRAPPER = re.compile(r"^Optional\[(.*)\]$")
_NULL_MEMBERS = {"null", "undefined", "None", "NoneType"}


def strip_optional(type_name: str) -> str:
    """Remove optional markers: ``T?``, ``T | null``, ``Optional[T]``."""
    t = (type_name or "").strip()
    match = _OPTIONAL_WRAPPER.match(t)
    if match:
        t = match.group(1).strip()
    if "|" in t:
        members = [m.strip() for m in t.split("|") if m.strip() not in _NULL_MEMBERS]
        t = " | ".join(m for m in members if m)
    if t.endswith("?"):
        t = t[:-1].strip()
    return t


def types_compatible(left: str, right: str, config: EngineConfig) -> bool:
    """Types are compatible when equal or in the same equivalence group."""
    left, right = strip_optional(left), strip_optional(right)
    if left == right:
        return True
    group = config.type_group(left)
    return group is not None and group == config.type_group(right)


# ================================
# Mismatch computation
# ================================

def _field_detail(f) -> str:
    return f"{f.name}: {f.field_type} ({'required' if f.required else 'optional'})"


def _status_codes(entity: Entity) -> List[str]:
    codes = entity.metadata.get("status_codes") or []
    if not isinstance(codes, (list, tuple)):
        codes = [codes]
    return sorted({str(c) for c in codes})


def compute_mismatches(frontend: Entity, backend: Entity, config: Optional[EngineConfig] = None,
                       declared_side: str = "frontend") -> Tuple[Mismatch, ...]:
    """
    Diff the shapes (and route metadata) of a frontend and a backend entity.

    Args:
        frontend: Frontend member of the pair
        backend: Backend member of the pair
        config: Engine configuration (type equivalence table)
        declared_side: Side whose fields are the reference. A field on the
            declared side absent from the other is MissingField; a field only
            on the other side is ExtraField.

    Returns:
        Mismatches in declared-field order, then counterpart-only fields,
        then status codes
    """
    config = config or get_default_config()
    if Layer(declared_side) == Layer.BACKEND:
        declared, counterpart = backend, frontend
    else:
        declared, counterpart = frontend, backend

    def mismatch(kind, name, declared_field, counterpart_field):
        d = _field_detail(declared_field) if declared_field else None
        c = _field_detail(counterpart_field) if counterpart_field else None
        return Mismatch(kind, name, d, c) if declared is frontend else Mismatch(kind, name, c, d)

    declared_fields = declared.field_map()
    counterpart_fields = counterpart.field_map()
    result: List[Mismatch] = []

    for f in declared.shape or ():
        other = counterpart_fields.get(f.name)
        if other is None:
            result.append(mismatch(MismatchKind.MISSING_FIELD, f.name, f, None))
            continue
        if not types_compatible(f.field_type, other.field_type, config):
            result.append(mismatch(MismatchKind.TYPE_MISMATCH, f.name, f, other))
        if f.required != other.required:
            result.append(mismatch(MismatchKind.VALIDATION_MISMATCH, f.name, f, other))

    for f in counterpart.shape or ():
        if f.name not in declared_fields:
            result.append(mismatch(MismatchKind.EXTRA_FIELD, f.name, None, f))

    if frontend.kind == EntityKind.API_ROUTE and backend.kind == EntityKind.API_ROUTE:
        frontend_codes, backend_codes = _status_codes(frontend), _status_codes(backend)
        if frontend_codes and backend_codes:
            for code in frontend_codes:
                if code not in backend_codes:
                    result.append(Mismatch(MismatchKind.STATUS_CODE_MISMATCH, None,
                                           f"handles {code}", f"declares {', '.join(backend_codes)}"))

    return tuple(result)


# ================================
# Checker
# ================================

@dataclass
class _Family:
    family: ContractFamily
    key: str
    frontend: List[Entity] = field(default_factory=list)
    backend: List[Entity] = field(default_factory=list)
    bases: Dict[str, str] = field(default_factory=dict)  # entity id -> match basis


class ConsistencyChecker:
    """
    Pairs frontend and backend contract entities and diffs their shapes.

    Matching never guesses from name similarity: differently named types are
    paired only through the mapping table, ``contract_name`` or the naming
    rules in the ``contracts`` configuration section.
    """

    def __init__(self, config: Optional[EngineConfig] = None, strict: bool = False):
        self.config = config or get_default_config()
        self.strict = strict
        contracts = self.config.contracts
        self._mappings: Dict[str, str] = dict(contracts.get("mappings") or {})
        self._naming_rules: Dict[str, Dict[str, List[str]]] = contracts.get("naming_rules") or {}
        self._route_prefixes: List[str] = list(contracts.get("route_prefixes") or [])
        self._declared_side: str = contracts.get("declared_side", Layer.FRONTEND.value)

    def check(self, snapshot, declared_side: Optional[str] = None) -> ConsistencyReport:
        """
        Compute ContractPairs and findings for a snapshot.

        Raises:
            DuplicateRouteError: in strict mode, when several backend entities
                share one family key
        """
        declared_side = Layer(declared_side or self._declared_side).value
        families = self._partition(self.contract_entities(snapshot))

        report = ConsistencyReport(declared_side=declared_side, snapshot_version=snapshot.version)
        orphans: List[_Family] = []

        for fam_key in sorted(families):
            fam = families[fam_key]
            if len(fam.backend) > 1:
                self._duplicate(fam, report)
                continue
            if not fam.frontend or not fam.backend:
                orphans.append(fam)
                continue
            backend = fam.backend[0]
            for frontend in sorted(fam.frontend, key=lambda e: e.id):
                basis = self._pair_basis(fam, frontend, backend)
                report.pairs.append(ContractPair(
                    family=fam.family,
                    key=fam.key,
                    frontend=frontend.id,
                    backend=backend.id,
                    match_basis=basis,
                    confidence=MATCH_CONFIDENCE[basis],
                    mismatches=compute_mismatches(frontend, backend, self.config, declared_side),
                ))

        for fam in self._pair_orphan_routes(orphans, report, declared_side):
            side = "frontend" if fam.frontend else "backend"
            members = fam.frontend or fam.backend
            report.findings.append(Finding(
                rule="OrphanContract",
                message=f"{fam.family.value.capitalize()} contract '{fam.key}' has only a {side} side",
                severity="info",
                entity_ids=tuple(sorted(e.id for e in members)),
                meta={"family": fam.family.value, "key": fam.key, "side": side},
            ))

        for entity in self.unrouted_entities(snapshot):
            report.findings.append(Finding(
                rule="UnroutedContract",
                message=f"ApiRoute '{entity.id}' declares no path and is left out of contract matching",
                severity="info",
                entity_ids=(entity.id,),
                meta={"side": entity.layer.value},
            ))

        report.pairs.sort(key=lambda p: (p.family.value, p.key, p.frontend, p.backend))
        report.findings.sort(key=lambda f: (f.rule, f.entity_ids))
        logger.info(f"Consistency check on snapshot v{snapshot.version}: {len(report.pairs)} pairs, "
                    f"{len(report.mismatches())} mismatches, {len(report.findings)} findings")
        return report

    def contract_entities(self, snapshot) -> List[Entity]:
        """ApiRoute entities and shaped Type entities on the frontend or backend layer."""
        result = []
        for entity in snapshot.entities():
            if entity.layer not in (Layer.FRONTEND, Layer.BACKEND):
                continue
            if entity.kind == EntityKind.API_ROUTE and entity.metadata.get("path"):
                result.append(entity)
            elif entity.kind == EntityKind.TYPE and entity.shape is not None:
                result.append(entity)
        return result

    def unrouted_entities(self, snapshot) -> List[Entity]:
        return [e for e in snapshot.entities()
                if e.kind == EntityKind.API_ROUTE and e.layer in (Layer.FRONTEND, Layer.BACKEND)
                and not e.metadata.get("path")]

    # ---- family keys ----

    def route_key(self, entity: Entity) -> str:
        method = str(entity.metadata.get("method") or "GET").upper()
        return f"{method} {normalize_route_path(entity.metadata['path'], self._route_prefixes)}"

    def shape_key(self, entity: Entity) -> Tuple[str, str]:
        """Return (family key, match basis) for a shaped Type entity."""
        contract_name = entity.metadata.get("contract_name")
        if contract_name:
            return str(contract_name), "mapping"
        if entity.layer == Layer.FRONTEND and entity.name in self._mappings:
            return self._apply_naming_rules(self._mappings[entity.name], Layer.BACKEND), "mapping"
        key = self._apply_naming_rules(entity.name, entity.layer)
        return key, "convention" if key != entity.name else "name"

    def _apply_naming_rules(self, name: str, layer: Layer) -> str:
        rule = self._naming_rules.get(layer.value) or {}
        for prefix in rule.get("strip_prefixes") or []:
            if prefix and name.startswith(prefix) and len(name) > len(prefix):
                name = name[len(prefix):]
                break
        for suffix in rule.get("strip_suffixes") or []:
            if suffix and name.endswith(suffix) and len(name) > len(suffix):
                name = name[:-len(suffix)]
                break
        return name

    def _partition(self, entities: Iterable[Entity]) -> Dict[Tuple[str, str], _Family]:
        families: Dict[Tuple[str, str], _Family] = {}
        for entity in entities:
            if entity.kind == EntityKind.API_ROUTE:
                family, key, basis = ContractFamily.ROUTE, self.route_key(entity), "route"
            else:
                key, basis = self.shape_key(entity)
                family = ContractFamily.SHAPE
            fam = families.setdefault((family.value, key), _Family(family, key))
            fam.bases[entity.id] = basis
            if entity.layer == Layer.FRONTEND:
                fam.frontend.append(entity)
            else:
                fam.backend.append(entity)
        return families

    def _pair_basis(self, fam: _Family, frontend: Entity, backend: Entity) -> str:
        if fam.family == ContractFamily.ROUTE:
            return "route"
        bases = {fam.bases[frontend.id], fam.bases[backend.id]}
        return next(b for b in _BASIS_STRENGTH if b in bases)

    # ---- orphans and duplicates ----

    def _duplicate(self, fam: _Family, report: ConsistencyReport) -> None:
        backend_ids = sorted(e.id for e in fam.backend)
        if self.strict:
            raise DuplicateRouteError(fam.key, backend_ids)
        logger.warning(f"Contract key '{fam.key}' is registered by {len(backend_ids)} backend entities")
        report.findings.append(Finding(
            rule="DuplicateRoute",
            message=f"{fam.family.value.capitalize()} contract '{fam.key}' is registered by "
                    f"{len(backend_ids)} backend entities",
            severity="error",
            entity_ids=tuple(backend_ids + sorted(e.id for e in fam.frontend)),
            meta={"family": fam.family.value, "key": fam.key, "backend": backend_ids},
        ))

    def _pair_orphan_routes(self, orphans: List[_Family], report: ConsistencyReport,
                            declared_side: str) -> List[_Family]:
        """
        Pair a lone frontend route with a lone backend route on the same path.

        The pair carries a RouteMismatch for the differing methods. Returns
        the orphan families that stay unpaired.
        """
        by_path: Dict[str, Dict[str, List[_Family]]] = defaultdict(lambda: {"frontend": [], "backend": []})
        for fam in orphans:
            if fam.family != ContractFamily.ROUTE:
                continue
            path = fam.key.split(" ", 1)[1]
            by_path[path]["frontend" if fam.frontend else "backend"].append(fam)

        paired = set()
        for path in sorted(by_path):
            sides = by_path[path]
            if len(sides["frontend"]) != 1 or len(sides["backend"]) != 1:
                continue
            fe_fam, be_fam = sides["frontend"][0], sides["backend"][0]
            if len(fe_fam.frontend) != 1:
                continue
            frontend, backend = fe_fam.frontend[0], be_fam.backend[0]
            route_mismatch = Mismatch(
                MismatchKind.ROUTE_MISMATCH, None,
                fe_fam.key.split(" ", 1)[0], be_fam.key.split(" ", 1)[0],
            )
            report.pairs.append(ContractPair(
                family=ContractFamily.ROUTE,
                key=path,
                frontend=frontend.id,
                backend=backend.id,
                match_basis="route_path",
                confidence=MATCH_CONFIDENCE["route_path"],
                mismatches=(route_mismatch,) + compute_mismatches(frontend, backend, self.config, declared_side),
            ))
            paired.update({id(fe_fam), id(be_fam)})

        return [fam for fam in orphans if id(fam) not in paired]
