"""
Graph store for the blastradius engine.

Holds the typed dependency multigraph assembled from per-file scan results:
- Per-file contributions tagged with a monotonically increasing scan version
- Atomic per-file merge with incremental retraction of the previous version
- Batch merge so cross-file edges inside one scan do not depend on merge order
- Immutable snapshots consumed by every read-side component

Writes follow a single-writer discipline (one re-entrant lock); snapshots are
immutable, so readers never take the lock and never see a half-merged graph.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from .errors import DanglingEdgeError, DuplicateIdError, MergeError, StaleScanError
from .types import Dimension, Direction, Edge, Entity, EntityKind, ScanResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileContribution:
    """Entities and edges committed for one file at one scan version."""
    file_path: str
    scan_version: int
    entities: Tuple[Entity, ...]
    edges: Tuple[Edge, ...]


@dataclass(frozen=True)
class FileError:
    """A per-file failure aggregated into the scan report."""
    file_path: str
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, file_path: str, exc: Exception) -> "FileError":
        return cls(file_path=file_path, error_type=type(exc).__name__, message=str(exc))

    def to_dict(self) -> Dict[str, str]:
        return {"file_path": self.file_path, "error_type": self.error_type, "message": self.message}


@dataclass
class MergeOutcome:
    """Result of a batch merge."""
    merged: List[str] = field(default_factory=list)
    errors: List[FileError] = field(default_factory=list)
    graph_version: int = 0

    @property
    def rejected(self) -> List[str]:
        return [e.file_path for e in self.errors]


def _dimension_set(dimension) -> Optional[Set[Dimension]]:
    if dimension is None:
        return None
    if isinstance(dimension, (Dimension, str)):
        return {Dimension(dimension)}
    return {Dimension(d) for d in dimension}


class GraphSnapshot:
    """
    Immutable view of the graph at one version.

    All read-side components (consistency checker, impact analyzer, plan
    generator, report) work against a snapshot. Edges whose endpoint is no
    longer declared by any file are not part of the snapshot.
    """

    def __init__(self, version: int, entities: Dict[str, Entity], edges: List[Edge],
                 files: Dict[str, int], owners: Dict[str, Tuple[str, ...]]):
        self._version = version
        self._entities = MappingProxyType(dict(entities))
        self._edges = tuple(edges)
        self._files = MappingProxyType(dict(files))
        self._owners = MappingProxyType(dict(owners))

        outgoing: Dict[str, List[Edge]] = defaultdict(list)
        incoming: Dict[str, List[Edge]] = defaultdict(list)
        for edge in self._edges:
            outgoing[edge.source].append(edge)
            incoming[edge.target].append(edge)
        self._out: Mapping[str, Tuple[Edge, ...]] = MappingProxyType({k: tuple(v) for k, v in outgoing.items()})
        self._in: Mapping[str, Tuple[Edge, ...]] = MappingProxyType({k: tuple(v) for k, v in incoming.items()})

    @property
    def version(self) -> int:
        return self._version

    # ================================
    # Entity queries
    # ================================

    def entity(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get(entity_id)

    def has_entity(self, entity_id: str) -> bool:
        return entity_id in self._entities

    def entities(self) -> List[Entity]:
        """All entities, sorted by id."""
        return [self._entities[k] for k in sorted(self._entities)]

    def entity_ids(self) -> Set[str]:
        return set(self._entities)

    def entities_of_kind(self, kind) -> List[Entity]:
        kind = EntityKind(kind)
        return [e for e in self.entities() if e.kind == kind]

    def files(self) -> Dict[str, int]:
        """File path -> committed scan version."""
        return dict(self._files)

    def owners(self, entity_id: str) -> Tuple[str, ...]:
        """Files declaring the entity."""
        return self._owners.get(entity_id, ())

    def entities_in_file(self, file_path: str) -> List[Entity]:
        return [e for e in self.entities() if file_path in self._owners.get(e.id, ())]

    # ================================
    # Edge queries
    # ================================

    def edges(self) -> Tuple[Edge, ...]:
        return self._edges

    def neighbors(self, entity_id: str, dimension=None,
                  direction: Optional[Union[Direction, str]] = None) -> List[Edge]:
        """
        Get the immediate edges of an entity.

        Args:
            entity_id: Entity to look up
            dimension: Optional Dimension (or iterable of dimensions) to keep
            direction: ``forward`` for outgoing edges (entity is ``source``),
                ``backward`` for incoming edges (entity is ``target``), None for both

        Returns:
            Matching edges, outgoing before incoming, in graph order
        """
        dims = _dimension_set(dimension)
        if direction is None:
            candidates = self._out.get(entity_id, ()) + self._in.get(entity_id, ())
        elif Direction(direction) == Direction.FORWARD:
            candidates = self._out.get(entity_id, ())
        else:
            candidates = self._in.get(entity_id, ())
        result = []
        for edge in candidates:
            if dims is not None and edge.dimension not in dims:
                continue
            # Self-loops appear in both lists; report them once
            if direction is None and edge.source == edge.target and edge in result:
                continue
            result.append(edge)
        return result

    def dependents(self, entity_id: str) -> Set[str]:
        """Entities a change at entity_id propagates to through one edge."""
        return {e.other(entity_id) for e in self.neighbors(entity_id) if e.propagates_from(entity_id)}

    def dependencies(self, entity_id: str) -> Set[str]:
        """Entities whose change propagates to entity_id through one edge."""
        return {e.other(entity_id) for e in self.neighbors(entity_id) if not e.propagates_from(entity_id)}

    # ================================
    # Graph analytics
    # ================================

    def stats(self) -> Dict[str, object]:
        """Get graph statistics."""
        by_kind: Dict[str, int] = defaultdict(int)
        for entity in self._entities.values():
            by_kind[entity.kind.value] += 1
        by_dimension: Dict[str, int] = defaultdict(int)
        for edge in self._edges:
            by_dimension[edge.dimension.value] += 1
        return {
            "version": self._version,
            "files": len(self._files),
            "entities": len(self._entities),
            "edges": len(self._edges),
            "entities_by_kind": dict(sorted(by_kind.items())),
            "edges_by_dimension": dict(sorted(by_dimension.items())),
        }

    def critical_entities(self, threshold: int = 5) -> List[Dict[str, object]]:
        """
        Get entities that many others depend on (potential single points of failure).

        Args:
            threshold: Minimum number of dependents to be considered critical

        Returns:
            List of critical entities with metadata, most critical first
        """
        critical = []
        for entity_id in sorted(self._entities):
            dependents = self.dependents(entity_id)
            if len(dependents) >= threshold:
                critical.append({
                    "entity_id": entity_id,
                    "dependent_count": len(dependents),
                    "dependents": sorted(dependents),
                    "risk_level": _classify_risk_level(len(dependents)),
                })
        critical.sort(key=lambda x: (-x["dependent_count"], x["entity_id"]))
        return critical

    def cycles(self) -> List[List[str]]:
        """
        Strongly connected components of size > 1 in the propagation graph.

        Uses an iterative form of Tarjan's algorithm. Components are sorted
        internally and by their first member.
        """
        successors: Dict[str, List[str]] = {}
        for entity_id in sorted(self._entities):
            successors[entity_id] = sorted(self.dependents(entity_id))

        index: Dict[str, int] = {}
        lowlink: Dict[str, int] = {}
        on_stack: Set[str] = set()
        stack: List[str] = []
        components: List[List[str]] = []
        counter = 0

        for root in successors:
            if root in index:
                continue
            work = [(root, 0)]
            while work:
                node, child_idx = work.pop()
                if child_idx == 0:
                    index[node] = lowlink[node] = counter
                    counter += 1
                    stack.append(node)
                    on_stack.add(node)
                children = successors.get(node, [])
                recursed = False
                while child_idx < len(children):
                    child = children[child_idx]
                    child_idx += 1
                    if child not in index:
                        work.append((node, child_idx))
                        work.append((child, 0))
                        recursed = True
                        break
                    if child in on_stack:
                        lowlink[node] = min(lowlink[node], index[child])
                if recursed:
                    continue
                if lowlink[node] == index[node]:
                    component = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    if len(component) > 1:
                        components.append(sorted(component))
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])

        components.sort(key=lambda c: c[0])
        return components


def _classify_risk_level(dependent_count: int) -> str:
    """Classify risk level based on number of dependents"""
    if dependent_count > 20:
        return "critical"
    elif dependent_count > 10:
        return "high"
    elif dependent_count > 5:
        return "medium"
    else:
        return "low"


class GraphStore:
    """
    Incrementally updatable directed multigraph keyed by entity id.

    Every file's contribution is replaced as a unit. An entity declared by
    several files with the same (kind, language) is co-owned and stays in the
    graph while any owner still declares it; its definition is taken from the
    first owner in path order so results do not depend on merge order.
    """

    def __init__(self, persistence=None):
        self._contributions: Dict[str, FileContribution] = {}
        self._versions: Dict[str, int] = {}  # last committed scan version per file (kept after removal)
        self._issued: Dict[str, int] = {}  # highest version handed out by reserve_version
        self._version = 0
        self._snapshot: Optional[GraphSnapshot] = None
        self._lock = threading.RLock()
        self._persistence = persistence

        if persistence is not None:
            for contribution in persistence.load_contributions():
                self._contributions[contribution.file_path] = contribution
            self._versions.update(persistence.load_versions())
            if self._contributions:
                self._version = 1
                logger.info(f"Restored {len(self._contributions)} file contributions from storage")

    # ================================
    # Write side
    # ================================

    def merge(self, result: ScanResult) -> int:
        """
        Merge one file's scan result atomically.

        Args:
            result: Scan result for one file

        Returns:
            The scan version committed for the file

        Raises:
            StaleScanError, DuplicateIdError, DanglingEdgeError: the merge was
                rejected and the graph is unchanged
        """
        with self._lock:
            _, failures = self._merge_locked([result])
            if failures:
                raise failures[0]
            return self._versions[result.file_path]

    def merge_batch(self, results: Iterable[ScanResult]) -> MergeOutcome:
        """
        Merge many files' scan results; each file is accepted or rejected as a unit.

        Entities declared anywhere in the batch count as present when edges
        are checked, so cross-file references inside one scan are not rejected
        because of ordering. Rejections are iterated to a fixpoint.
        """
        with self._lock:
            outcome, _ = self._merge_locked(list(results))
            return outcome

    def remove_file(self, file_path: str) -> bool:
        """Retract a file's contribution. Returns False if the file was unknown."""
        with self._lock:
            if file_path not in self._contributions:
                return False
            if self._persistence is not None:
                self._persistence.delete_file(file_path)
            del self._contributions[file_path]
            self._bump()
            logger.info(f"Removed {file_path} from graph")
            return True

    def rebuild(self, results: Iterable[ScanResult]) -> MergeOutcome:
        """Explicit full rebuild: drop every contribution, then batch-merge."""
        with self._lock:
            if self._persistence is not None:
                self._persistence.clear()
            self._contributions.clear()
            self._bump()
            results = [r if r.scan_version is None or r.scan_version > self._versions.get(r.file_path, 0)
                       else r.with_version(None) for r in results]
            return self.merge_batch(results)

    def next_version(self, file_path: str) -> int:
        """Scan version the next reservation for file_path would get. Does not reserve it."""
        with self._lock:
            return self._latest_version(file_path) + 1

    def reserve_version(self, file_path: str) -> int:
        """
        Hand out a scan version for file_path.

        Every call returns a higher version than any earlier call or commit
        for the file, so of two overlapping scans the later one always wins.
        """
        with self._lock:
            version = self._latest_version(file_path) + 1
            self._issued[file_path] = version
            return version

    def _latest_version(self, file_path: str) -> int:
        return max(self._issued.get(file_path, 0), self._versions.get(file_path, 0))

    def _bump(self):
        self._version += 1
        self._snapshot = None

    def _merge_locked(self, results: List[ScanResult]) -> Tuple[MergeOutcome, List[MergeError]]:
        outcome = MergeOutcome()
        failures: List[MergeError] = []

        def reject(result: ScanResult, exc: MergeError):
            exc.file_path = exc.file_path or result.file_path
            failures.append(exc)
            outcome.errors.append(FileError.from_exception(result.file_path, exc))
            logger.warning(f"Rejected merge for {result.file_path}: {exc}")

        # Pre-validation: versions and intra-file duplicates
        candidates: Dict[str, Tuple[ScanResult, FileContribution]] = {}
        for result in sorted(results, key=lambda r: (r.file_path, r.scan_version or 0)):
            current = self._versions.get(result.file_path, 0)
            version = (result.scan_version if result.scan_version is not None
                       else self._latest_version(result.file_path) + 1)
            if result.file_path in candidates:
                superseded, _ = candidates.pop(result.file_path)
                reject(superseded, StaleScanError(result.file_path, superseded.scan_version or 0, version))
            if version <= current:
                reject(result, StaleScanError(result.file_path, version, current))
                continue
            try:
                entities = self._dedupe_entities(result)
            except DuplicateIdError as exc:
                reject(result, exc)
                continue
            edges_by_key: Dict[tuple, Edge] = {}
            for edge in result.edges:
                edges_by_key.setdefault(edge.key, edge)
            edges = tuple(edges_by_key.values())
            candidates[result.file_path] = (result, FileContribution(result.file_path, version, entities, edges))

        # Fixpoint: a rejected file falls back to its previous contribution
        accepted = dict(candidates)
        while True:
            rejected_now = self._validate_batch(accepted, reject)
            if not rejected_now:
                break
            for file_path in rejected_now:
                accepted.pop(file_path, None)

        if not accepted:
            outcome.graph_version = self._version
            return outcome, failures

        # Storage is written before memory; a StorageError leaves both unchanged
        if self._persistence is not None:
            self._persistence.replace_files(accepted[file_path][1] for file_path in sorted(accepted))

        for file_path in sorted(accepted):
            contribution = accepted[file_path][1]
            previous = self._contributions.get(file_path)
            self._contributions[file_path] = contribution
            self._versions[file_path] = contribution.scan_version
            outcome.merged.append(file_path)
            logger.debug(
                f"Merged {file_path} v{contribution.scan_version}: {len(contribution.entities)} entities, "
                f"{len(contribution.edges)} edges (replaced {len(previous.entities) if previous else 0} entities)")
        self._bump()
        outcome.graph_version = self._version
        logger.info(f"Merged {len(outcome.merged)} files ({len(outcome.errors)} rejected), graph v{self._version}")
        return outcome, failures

    @staticmethod
    def _dedupe_entities(result: ScanResult) -> Tuple[Entity, ...]:
        seen: Dict[str, Entity] = {}
        for entity in result.entities:
            existing = seen.get(entity.id)
            if existing is None:
                seen[entity.id] = entity
            elif existing.identity != entity.identity:
                raise DuplicateIdError(entity.id, existing.identity, entity.identity, result.file_path,
                                       owner=result.file_path)
        return tuple(seen.values())

    def _validate_batch(self, accepted: Dict[str, Tuple[ScanResult, FileContribution]], reject) -> List[str]:
        """Check id collisions and edge endpoints of accepted files; returns newly rejected files."""
        identities: Dict[str, Tuple[Tuple[str, str], str]] = {}
        for file_path in sorted(self._contributions):
            if file_path in accepted:
                continue
            for entity in self._contributions[file_path].entities:
                identities.setdefault(entity.id, (entity.identity, file_path))

        rejected: List[str] = []
        for file_path in sorted(accepted):
            result, contribution = accepted[file_path]
            conflict = None
            for entity in contribution.entities:
                known = identities.get(entity.id)
                if known is not None and known[0] != entity.identity:
                    conflict = DuplicateIdError(entity.id, known[0], entity.identity, file_path, owner=known[1])
                    break
            if conflict is not None:
                reject(result, conflict)
                rejected.append(file_path)
                continue
            for entity in contribution.entities:
                identities.setdefault(entity.id, (entity.identity, file_path))

        if rejected:
            return rejected

        present = set(identities)
        for file_path in sorted(accepted):
            result, contribution = accepted[file_path]
            for edge in contribution.edges:
                missing = edge.source if edge.source not in present else (
                    edge.target if edge.target not in present else None)
                if missing is not None:
                    reject(result, DanglingEdgeError(edge.source, edge.target, missing, file_path))
                    rejected.append(file_path)
                    break
        return rejected

    # ================================
    # Read side
    # ================================

    def snapshot(self) -> GraphSnapshot:
        """Get an immutable view of the current graph (cached until the next write)."""
        with self._lock:
            if self._snapshot is None:
                self._snapshot = self._build_snapshot()
            return self._snapshot

    def neighbors(self, entity_id: str, dimension=None, direction=None) -> List[Edge]:
        """Immediate edges of an entity in the current graph (see GraphSnapshot.neighbors)."""
        return self.snapshot().neighbors(entity_id, dimension, direction)

    def contribution(self, file_path: str) -> Optional[FileContribution]:
        with self._lock:
            return self._contributions.get(file_path)

    def _build_snapshot(self) -> GraphSnapshot:
        owners: Dict[str, List[str]] = defaultdict(list)
        declarations: Dict[str, Entity] = {}
        for file_path in sorted(self._contributions):
            for entity in self._contributions[file_path].entities:
                owners[entity.id].append(file_path)
                declarations.setdefault(entity.id, entity)

        edges: List[Edge] = []
        suspended = 0
        for file_path in sorted(self._contributions):
            for edge in self._contributions[file_path].edges:
                if edge.source in declarations and edge.target in declarations:
                    edges.append(edge)
                else:
                    suspended += 1
        if suspended:
            logger.debug(f"{suspended} edges hidden from snapshot v{self._version}: endpoint no longer declared")

        files = {path: c.scan_version for path, c in self._contributions.items()}
        return GraphSnapshot(self._version, declarations, edges, files,
                             {k: tuple(v) for k, v in owners.items()})
