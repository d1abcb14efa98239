"""
Core types for the blastradius engine.

This module provides the entity/edge schema shared by extractors, the graph
store and every read-side component. The types are plain data: the only
behavior is validation and conversion to and from wire dictionaries.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from .errors import InvalidEdgeError, InvalidEntityError


DiagnosticSeverity = Literal["error", "warning"]


class EntityKind(str, Enum):
    """Kinds of tracked artifacts."""
    FUNCTION = "Function"
    TYPE = "Type"
    API_ROUTE = "ApiRoute"
    CONFIG_KEY = "ConfigKey"
    TEST = "Test"
    DATA_SINK = "DataSink"


class Dimension(str, Enum):
    """Dependency dimensions an edge can belong to."""
    REFERENCE = "Reference"
    DATA_FLOW = "DataFlow"
    CONTRACT = "Contract"
    CONFIG = "Config"
    CONSISTENCY = "Consistency"


class Direction(str, Enum):
    """
    How a change propagates along an edge.

    forward: a change at ``source`` propagates to ``target``.
    backward: a change at ``target`` propagates to ``source`` (a caller -> callee
    reference edge is backward, since changing the callee breaks the caller).
    """
    FORWARD = "forward"
    BACKWARD = "backward"


class Layer(str, Enum):
    """Application layer an entity belongs to, used for contract matching."""
    FRONTEND = "frontend"
    BACKEND = "backend"
    SHARED = "shared"


class ChangeKind(str, Enum):
    """Kind of change applied to an entity."""
    ADDED = "Added"
    REMOVED = "Removed"
    MODIFIED = "Modified"


# Kinds whose entities may carry a shape
SHAPED_KINDS = (EntityKind.TYPE, EntityKind.API_ROUTE)


def make_entity_id(file_path: str, kind, name: str) -> str:
    """
    Build the canonical stable id for an entity.

    Args:
        file_path: Repository-relative path of the declaring file
        kind: EntityKind (or its string value)
        name: Declared (qualified) name inside the file

    Returns:
        Id of the form ``"<file>::<Kind>::<name>"``
    """
    kind_value = EntityKind(kind).value
    return f"{file_path}::{kind_value}::{name}"


def _coerce_enum(enum_cls, value, error_cls, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise error_cls(f"Invalid {what} '{value}' (expected one of: {allowed})") from None


@dataclass(frozen=True)
class Location:
    """Source location of an entity (1-based, inclusive line range)."""
    file: str
    start_line: int = 0
    end_line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "start_line": self.start_line, "end_line": self.end_line}


@dataclass(frozen=True)
class ShapeField:
    """One field of a Type or ApiRoute shape."""
    name: str
    field_type: str
    required: bool = True
    source: str = ""  # where the field was declared (e.g. "body", "query", "interface")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.field_type,
            "required": self.required,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShapeField":
        if not isinstance(data, dict) or not data.get("name"):
            raise InvalidEntityError(f"Shape field must be a mapping with a 'name': {data!r}")
        return cls(
            name=str(data["name"]),
            field_type=str(data.get("type", data.get("field_type", "any"))),
            required=bool(data.get("required", True)),
            source=str(data.get("source", "")),
        )


@dataclass(frozen=True)
class Entity:
    """
    A uniquely identified code, contract or config artifact.

    Attributes:
        id: Globally unique id, stable across re-scans of unchanged source
        kind: EntityKind
        language: Source language (e.g. "python", "typescript", "yaml")
        location: Declaring file and line range
        name: Declared name (type name, function name, dotted config key, ...)
        layer: frontend/backend/shared; required for contract matching
        shape: Ordered fields; only for Type and ApiRoute entities
        metadata: Free-form details. ApiRoute entities use ``path``, ``method``
            and ``status_codes``; Type entities may set ``contract_name``.
    """
    id: str
    kind: EntityKind
    language: str
    location: Location
    name: str = ""
    layer: Optional[Layer] = None
    shape: Optional[Tuple[ShapeField, ...]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise InvalidEntityError(f"Entity id must be a non-empty string, got {self.id!r}")
        object.__setattr__(self, "kind", _coerce_enum(EntityKind, self.kind, InvalidEntityError, "entity kind"))
        if self.layer is not None:
            object.__setattr__(self, "layer", _coerce_enum(Layer, self.layer, InvalidEntityError, "layer"))
        if self.shape is not None:
            if self.kind not in SHAPED_KINDS:
                raise InvalidEntityError(
                    f"Entity '{self.id}' of kind {self.kind.value} cannot carry a shape")
            object.__setattr__(self, "shape", tuple(self.shape))
        if not self.name:
            object.__setattr__(self, "name", self.id)

    @property
    def file_path(self) -> str:
        return self.location.file

    @property
    def identity(self) -> Tuple[str, str]:
        """The (kind, language) pair used for duplicate-id detection."""
        return (self.kind.value, self.language)

    def field_map(self) -> Dict[str, ShapeField]:
        """Shape fields keyed by name (empty when the entity has no shape)."""
        return {f.name: f for f in (self.shape or ())}

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "kind": self.kind.value,
            "language": self.language,
            "name": self.name,
            "location": self.location.to_dict(),
            "layer": self.layer.value if self.layer else None,
            "metadata": dict(self.metadata),
        }
        data["shape"] = [f.to_dict() for f in self.shape] if self.shape is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        """Build an entity from its wire dictionary."""
        if not isinstance(data, dict):
            raise InvalidEntityError(f"Entity record must be a mapping, got {type(data).__name__}")
        if "id" not in data or "kind" not in data:
            raise InvalidEntityError(f"Entity record needs 'id' and 'kind': {data!r}")
        loc = data.get("location") or {}
        location = Location(
            file=str(loc.get("file", data.get("file", ""))),
            start_line=int(loc.get("start_line", 0) or 0),
            end_line=int(loc.get("end_line", 0) or 0),
        )
        shape = data.get("shape")
        if shape is not None:
            if not isinstance(shape, list):
                raise InvalidEntityError(f"Shape of '{data['id']}' must be a list")
            shape = tuple(ShapeField.from_dict(f) for f in shape)
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise InvalidEntityError(f"Metadata of '{data['id']}' must be a mapping")
        return cls(
            id=data["id"],
            kind=data["kind"],
            language=str(data.get("language", "unknown")),
            location=location,
            name=str(data.get("name", "")),
            layer=data.get("layer"),
            shape=shape,
            metadata=dict(metadata),
        )


@dataclass(frozen=True)
class Edge:
    """A typed, directed relation between two entities."""
    source: str
    target: str
    dimension: Dimension
    direction: Direction = Direction.BACKWARD
    confidence: float = 1.0

    def __post_init__(self):
        if not self.source or not self.target:
            raise InvalidEdgeError(f"Edge endpoints must be non-empty ({self.source!r} -> {self.target!r})")
        object.__setattr__(self, "dimension", _coerce_enum(Dimension, self.dimension, InvalidEdgeError, "dimension"))
        object.__setattr__(self, "direction", _coerce_enum(Direction, self.direction, InvalidEdgeError, "direction"))
        try:
            confidence = float(self.confidence)
        except (TypeError, ValueError):
            raise InvalidEdgeError(f"Edge confidence must be a number, got {self.confidence!r}") from None
        if not 0.0 <= confidence <= 1.0:
            raise InvalidEdgeError(f"Edge confidence {confidence} outside [0, 1] for {self.source} -> {self.target}")
        if self.dimension == Dimension.REFERENCE and confidence != 1.0:
            raise InvalidEdgeError(
                f"Reference edge {self.source} -> {self.target} must have confidence 1.0, got {confidence}")
        object.__setattr__(self, "confidence", confidence)

    @property
    def key(self) -> Tuple[str, str, str, str]:
        """Identity of the edge inside one file's contribution."""
        return (self.source, self.target, self.dimension.value, self.direction.value)

    def other(self, entity_id: str) -> str:
        """Return the endpoint opposite to entity_id."""
        return self.target if entity_id == self.source else self.source

    def propagates_from(self, entity_id: str) -> bool:
        """True if a change at entity_id propagates across this edge."""
        if self.direction == Direction.FORWARD:
            return entity_id == self.source
        return entity_id == self.target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.source,
            "to": self.target,
            "dimension": self.dimension.value,
            "direction": self.direction.value,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        if not isinstance(data, dict):
            raise InvalidEdgeError(f"Edge record must be a mapping, got {type(data).__name__}")
        source = data.get("from", data.get("source"))
        target = data.get("to", data.get("target"))
        if "dimension" not in data:
            raise InvalidEdgeError(f"Edge record needs a 'dimension': {data!r}")
        return cls(
            source=source,
            target=target,
            dimension=data["dimension"],
            direction=data.get("direction", Direction.BACKWARD),
            confidence=data.get("confidence", 1.0),
        )


@dataclass(frozen=True)
class ParseDiagnostic:
    """A non-fatal problem reported by an extractor for one file."""
    file_path: str
    message: str
    severity: DiagnosticSeverity = "error"
    line: Optional[int] = None
    extractor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "message": self.message,
            "severity": self.severity,
            "line": self.line,
            "extractor": self.extractor,
        }


@dataclass(frozen=True)
class ScanResult:
    """
    Output of one extractor run over one file.

    ``scan_version`` orders scans of the same file; when left as None the
    graph store assigns the next version on merge.
    """
    file_path: str
    entities: Tuple[Entity, ...] = ()
    edges: Tuple[Edge, ...] = ()
    diagnostics: Tuple[ParseDiagnostic, ...] = ()
    scan_version: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "entities", tuple(self.entities))
        object.__setattr__(self, "edges", tuple(self.edges))
        object.__setattr__(self, "diagnostics", tuple(self.diagnostics))

    @property
    def has_errors(self) -> bool:
        """True if any diagnostic is error-severity (the file must not be merged)."""
        return any(d.severity == "error" for d in self.diagnostics)

    def with_version(self, scan_version: Optional[int]) -> "ScanResult":
        return ScanResult(self.file_path, self.entities, self.edges, self.diagnostics, scan_version)


def combine_results(file_path: str, results: List[ScanResult]) -> ScanResult:
    """
    Combine the results of several extractors that ran over the same file.

    Identical entities and edges are kept once. Conflicting declarations of
    the same id are all kept so the graph store can reject them.
    """
    entities: List[Entity] = []
    edges: Dict[tuple, Edge] = {}
    diagnostics: List[ParseDiagnostic] = []
    for result in results:
        for entity in result.entities:
            if entity not in entities:
                entities.append(entity)
        for edge in result.edges:
            edges.setdefault(edge.key, edge)
        diagnostics.extend(result.diagnostics)
    return ScanResult(file_path, tuple(entities), tuple(edges.values()), tuple(diagnostics))
