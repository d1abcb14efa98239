"""
Shared builders for blastradius tests.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from blastradius.types import (
    Dimension, Direction, Edge, Entity, EntityKind, Location, ParseDiagnostic, ScanResult, ShapeField,
    make_entity_id
)


def fn(name: str, file: str = "src/app.py", language: str = "python", layer: Optional[str] = None) -> Entity:
    return Entity(
        id=make_entity_id(file, EntityKind.FUNCTION, name),
        kind=EntityKind.FUNCTION,
        language=language,
        location=Location(file, 1, 2),
        name=name,
        layer=layer,
    )


def entity(name: str, kind: EntityKind, file: str = "src/app.py", language: str = "python",
           layer: Optional[str] = None) -> Entity:
    return Entity(
        id=make_entity_id(file, kind, name),
        kind=kind,
        language=language,
        location=Location(file, 1, 2),
        name=name,
        layer=layer,
    )


def fields(items: Iterable[Tuple]) -> Tuple[ShapeField, ...]:
    """Build shape fields from (name, type) or (name, type, required) tuples."""
    result = []
    for item in items:
        name, field_type = item[0], item[1]
        required = item[2] if len(item) > 2 else True
        result.append(ShapeField(name, field_type, required))
    return tuple(result)


def shaped_type(name: str, shape: Sequence[Tuple], layer: str, file: Optional[str] = None,
                language: Optional[str] = None, **metadata) -> Entity:
    file = file or ("web/types.ts" if layer == "frontend" else "server/dto.py")
    language = language or ("typescript" if layer == "frontend" else "python")
    return Entity(
        id=make_entity_id(file, EntityKind.TYPE, name),
        kind=EntityKind.TYPE,
        language=language,
        location=Location(file, 1, 10),
        name=name,
        layer=layer,
        shape=fields(shape),
        metadata=dict(metadata),
    )


def route(name: str, path: str, method: str, layer: str, file: Optional[str] = None,
          shape: Optional[Sequence[Tuple]] = None, status_codes: Optional[List[int]] = None) -> Entity:
    file = file or ("web/api.ts" if layer == "frontend" else "server/routes.py")
    metadata = {"path": path, "method": method}
    if status_codes is not None:
        metadata["status_codes"] = status_codes
    return Entity(
        id=make_entity_id(file, EntityKind.API_ROUTE, name),
        kind=EntityKind.API_ROUTE,
        language="typescript" if layer == "frontend" else "python",
        location=Location(file, 1, 5),
        name=name,
        layer=layer,
        shape=fields(shape) if shape is not None else None,
        metadata=metadata,
    )


def calls(caller: Entity, callee: Entity) -> Edge:
    """Reference edge: changing the callee breaks the caller."""
    return Edge(caller.id, callee.id, Dimension.REFERENCE, Direction.BACKWARD)


def edge(source: Entity, target: Entity, dimension: Dimension, confidence: float = 1.0,
         direction: Direction = Direction.BACKWARD) -> Edge:
    return Edge(source.id, target.id, dimension, direction, confidence)


def result(file_path: str, entities: Iterable[Entity] = (), edges: Iterable[Edge] = (),
           diagnostics: Iterable[ParseDiagnostic] = (), version: Optional[int] = None) -> ScanResult:
    return ScanResult(file_path, tuple(entities), tuple(edges), tuple(diagnostics), version)


FRONTEND_MANIFEST = """\
language: typescript
layer: frontend
entities:
  - name: UserInput
    kind: Type
    file: web/src/types.ts
    lines: [1, 5]
    shape:
      - {name: name, type: string}
      - {name: email, type: string}
  - name: updateUser
    kind: ApiRoute
    file: web/src/api.ts
    path: "/api/users/${id}"
    method: PUT
    status_codes: [200, 404]
  - name: saveProfile
    kind: Function
    file: web/src/profile.ts
edges:
  - {from: saveProfile, to: updateUser, dimension: Reference}
  - {from: saveProfile, to: UserInput, dimension: Reference}
"""

BACKEND_MANIFEST = """\
language: java
layer: backend
entities:
  - name: UpdateUserDTO
    kind: Type
    file: server/src/UpdateUserDTO.java
    shape:
      - {name: name, type: String}
      - {name: email, type: String}
  - name: updateUser
    kind: ApiRoute
    file: server/src/UserController.java
    path: /users/{id}
    method: PUT
    status_codes: [200, 404]
  - name: UserService.update
    kind: Function
    file: server/src/UserService.java
edges:
  - {from: updateUser, to: UserService.update, dimension: Reference}
  - {from: updateUser, to: UpdateUserDTO, dimension: Contract}
"""

USER_INPUT_ID = "web/src/types.ts::Type::UserInput"
FRONTEND_ROUTE_ID = "web/src/api.ts::ApiRoute::updateUser"
SAVE_PROFILE_ID = "web/src/profile.ts::Function::saveProfile"
UPDATE_USER_DTO_ID = "server/src/UpdateUserDTO.java::Type::UpdateUserDTO"
BACKEND_ROUTE_ID = "server/src/UserController.java::ApiRoute::updateUser"
USER_SERVICE_ID = "server/src/UserService.java::Function::UserService.update"

MANIFEST_CONFIG = {
    "contracts": {
        "mappings": {"UserInput": "UpdateUserDTO"},
        "route_prefixes": ["/api"],
    },
}

MANIFEST_FILES = {
    "web/api.impact.yml": FRONTEND_MANIFEST,
    "server/api.impact.yml": BACKEND_MANIFEST,
}
