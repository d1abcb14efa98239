"""
Manifest extractor for the blastradius engine.

Reads entity manifests (``*.impact.yml`` / ``*.impact.yaml`` / ``*.impact.json``)
written by external language tooling. A manifest lists entities and edges in
the engine's wire format, with a few conveniences:

    language: typescript        # default language for entities
    layer: frontend             # default layer for entities
    entities:
      - name: UserInput
        kind: Type
        file: web/src/api/types.ts
        lines: [3, 9]
        shape:
          - {name: email, type: string, required: true}
      - name: updateUser
        kind: ApiRoute
        path: /users/{id}
        method: PUT
        status_codes: [200, 404]
    edges:
      - {from: updateUser, to: UserInput, dimension: Contract, direction: backward}

Edge endpoints may be names declared in the same manifest or full entity ids.
Malformed entries are skipped with warning diagnostics; an unreadable
document yields one error diagnostic and no entities.
"""

import logging
from typing import Any, Dict, List, Tuple

import yaml

from .errors import InvalidEdgeError, InvalidEntityError
from .extractors import Extractor, ExtractorRole
from .types import Edge, Entity, EntityKind, Location, ParseDiagnostic, ScanResult, ShapeField, make_entity_id

logger = logging.getLogger(__name__)


ROUTE_KEYS = ("path", "method", "status_codes")


class ManifestExtractor(Extractor):
    """Extractor for YAML/JSON entity manifests."""

    @property
    def name(self) -> str:
        return "manifest"

    @property
    def roles(self) -> Tuple[ExtractorRole, ...]:
        return tuple(ExtractorRole)

    @property
    def file_patterns(self) -> Tuple[str, ...]:
        return ("*.impact.yml", "*.impact.yaml", "*.impact.json")

    def extract(self, content: str, file_path: str) -> ScanResult:
        try:
            document = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            return ScanResult(file_path, diagnostics=(ParseDiagnostic(
                file_path=file_path,
                message=f"Invalid manifest: {getattr(e, 'problem', None) or e}",
                severity="error",
                line=mark.line + 1 if mark is not None else None,
                extractor=self.name,
            ),))

        if not isinstance(document, dict):
            return ScanResult(file_path, diagnostics=(self._diag(
                file_path, f"Manifest must be a mapping, got {type(document).__name__}", "error"),))

        diagnostics: List[ParseDiagnostic] = []
        entities: List[Entity] = []
        local_ids: Dict[str, str] = {}

        raw_entities = document.get("entities") or []
        if not isinstance(raw_entities, list):
            diagnostics.append(self._diag(file_path, "'entities' must be a list", "error"))
            raw_entities = []

        for index, raw in enumerate(raw_entities):
            try:
                entity = self._build_entity(raw, document, file_path)
            except (InvalidEntityError, TypeError, ValueError) as e:
                diagnostics.append(self._diag(file_path, f"Skipped entity #{index}: {e}", "warning"))
                continue
            entities.append(entity)
            local_ids.setdefault(entity.name, entity.id)

        edges: List[Edge] = []
        raw_edges = document.get("edges") or []
        if not isinstance(raw_edges, list):
            diagnostics.append(self._diag(file_path, "'edges' must be a list", "error"))
            raw_edges = []

        for index, raw in enumerate(raw_edges):
            try:
                if not isinstance(raw, dict):
                    raise InvalidEdgeError(f"edge must be a mapping, got {type(raw).__name__}")
                raw = dict(raw)
                for end in ("from", "to"):
                    if raw.get(end) in local_ids:
                        raw[end] = local_ids[raw[end]]
                edges.append(Edge.from_dict(raw))
            except (InvalidEdgeError, TypeError, ValueError) as e:
                diagnostics.append(self._diag(file_path, f"Skipped edge #{index}: {e}", "warning"))

        logger.debug(f"Manifest {file_path}: {len(entities)} entities, {len(edges)} edges, "
                     f"{len(diagnostics)} diagnostics")
        return ScanResult(file_path, tuple(entities), tuple(edges), tuple(diagnostics))

    def _build_entity(self, raw: Any, document: Dict[str, Any], file_path: str) -> Entity:
        if not isinstance(raw, dict):
            raise InvalidEntityError(f"entity must be a mapping, got {type(raw).__name__}")
        if not raw.get("name") and not raw.get("id"):
            raise InvalidEntityError("entity needs a 'name' or an 'id'")
        kind = EntityKind(raw.get("kind"))
        name = str(raw.get("name") or raw["id"])
        source_file = str(raw.get("file") or file_path)

        lines = raw.get("lines") or [0, 0]
        if not isinstance(lines, list) or len(lines) != 2:
            raise InvalidEntityError(f"'lines' of '{name}' must be [start, end]")

        metadata = dict(raw.get("metadata") or {})
        for key in ROUTE_KEYS:
            if key in raw:
                metadata[key] = raw[key]
        if "contract_name" in raw:
            metadata["contract_name"] = raw["contract_name"]

        shape = raw.get("shape")
        if shape is not None:
            if not isinstance(shape, list):
                raise InvalidEntityError(f"shape of '{name}' must be a list")
            shape = tuple(ShapeField.from_dict(f) for f in shape)

        return Entity(
            id=str(raw.get("id") or make_entity_id(source_file, kind, name)),
            kind=kind,
            language=str(raw.get("language") or document.get("language") or "unknown"),
            location=Location(source_file, int(lines[0]), int(lines[1])),
            name=name,
            layer=raw.get("layer", document.get("layer")),
            shape=shape,
            metadata=metadata,
        )

    def _diag(self, file_path: str, message: str, severity: str) -> ParseDiagnostic:
        return ParseDiagnostic(file_path=file_path, message=message, severity=severity, extractor=self.name)


default_manifest_extractor = ManifestExtractor()
