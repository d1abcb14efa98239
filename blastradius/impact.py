"""
Impact analysis for the blastradius engine.

Breadth-first traversal from a set of changed entities over a graph snapshot.
Edges are followed only when their dimension is requested and their
confidence reaches the configured threshold; a visited set bounds the
traversal on cyclic graphs. Every impacted entity keeps the edge chain that
reached it.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .cancellation import ScanStatus, is_cancelled
from .config import EngineConfig, get_default_config
from .types import ChangeKind, Dimension, Direction, Edge, EntityKind

logger = logging.getLogger(__name__)


# Order of dimensions when several reach the same BFS layer
DIMENSION_PRECEDENCE = (
    Dimension.CONTRACT,
    Dimension.CONSISTENCY,
    Dimension.DATA_FLOW,
    Dimension.REFERENCE,
    Dimension.CONFIG,
)
_PRECEDENCE = {d: i for i, d in enumerate(DIMENSION_PRECEDENCE)}


@dataclass(frozen=True)
class ImpactedEntity:
    """
    One entity reached from the changed set.

    Attributes:
        entity_id: Impacted entity
        layer: BFS layer (1 = direct neighbor of a changed entity)
        dimension: Dimension of the edge that reached it
        root: Changed entity the chain starts from
        parent: Entity it was reached from (last hop)
        chain: Edges from root to this entity
        kind: Entity kind, when known
    """
    entity_id: str
    layer: int
    dimension: Dimension
    root: str
    parent: str
    chain: Tuple[Edge, ...]
    kind: Optional[EntityKind] = None

    @property
    def confidence(self) -> float:
        """Product of the chain's edge confidences."""
        value = 1.0
        for edge in self.chain:
            value *= edge.confidence
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "layer": self.layer,
            "dimension": self.dimension.value,
            "root": self.root,
            "parent": self.parent,
            "kind": self.kind.value if self.kind else None,
            "confidence": round(self.confidence, 6),
            "chain": [e.to_dict() for e in self.chain],
        }


@dataclass
class ImpactResult:
    """Outcome of one impact analysis run."""
    changes: Dict[str, ChangeKind]
    impacted: List[ImpactedEntity] = field(default_factory=list)
    unknown_ids: List[str] = field(default_factory=list)
    status: ScanStatus = ScanStatus.COMPLETED
    dimensions: Tuple[Dimension, ...] = tuple(Dimension)
    max_depth: Optional[int] = None
    snapshot_version: int = 0

    @property
    def by_dimension(self) -> Dict[str, List[ImpactedEntity]]:
        """Dimension -> impacted entities ordered by proximity."""
        grouped: Dict[str, List[ImpactedEntity]] = {}
        for item in self.impacted:
            grouped.setdefault(item.dimension.value, []).append(item)
        return grouped

    @property
    def impacted_ids(self) -> List[str]:
        return [item.entity_id for item in self.impacted]

    @property
    def cancelled(self) -> bool:
        return self.status == ScanStatus.CANCELLED

    def get(self, entity_id: str) -> Optional[ImpactedEntity]:
        for item in self.impacted:
            if item.entity_id == entity_id:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": {k: v.value for k, v in sorted(self.changes.items())},
            "status": self.status.value,
            "snapshot_version": self.snapshot_version,
            "dimensions": [d.value for d in self.dimensions],
            "max_depth": self.max_depth,
            "impacted": [item.to_dict() for item in self.impacted],
            "by_dimension": {dim: [i.entity_id for i in items] for dim, items in self.by_dimension.items()},
            "unknown_ids": list(self.unknown_ids),
        }


def normalize_changes(changes: Union[Mapping[str, Any], Iterable[str]]) -> Dict[str, ChangeKind]:
    """Accept ``{id: kind}`` or a plain iterable of ids (treated as Modified)."""
    if isinstance(changes, Mapping):
        return {str(k): ChangeKind(v) for k, v in changes.items()}
    return {str(k): ChangeKind.MODIFIED for k in changes}


def consistency_edges(contract_pairs) -> List[Edge]:
    """Derived Consistency edges between the members of each ContractPair (both ways)."""
    edges = []
    for pair in contract_pairs or ():
        edges.append(Edge(pair.frontend, pair.backend, Dimension.CONSISTENCY, Direction.FORWARD, pair.confidence))
        edges.append(Edge(pair.backend, pair.frontend, Dimension.CONSISTENCY, Direction.FORWARD, pair.confidence))
    return edges


class ImpactAnalyzer:
    """Computes the set of entities that could break when entities change."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or get_default_config()

    def analyze(self, snapshot, changes, dimensions=None, max_depth: Optional[int] = None,
                direction: Optional[Union[Direction, str]] = None, token=None,
                contract_pairs=None) -> ImpactResult:
        """
        Run a layered BFS from the changed entities.

        Args:
            snapshot: GraphSnapshot to traverse
            changes: ``{entity_id: ChangeKind}`` (or an iterable of ids)
            dimensions: Dimensions to follow (default: all)
            max_depth: Maximum BFS layer (default: unbounded)
            direction: ``forward`` follows propagation (who will this change
                affect), ``backward`` follows it in reverse (what does this
                entity depend on), None follows both
            token: Optional CancellationToken, checked at each layer boundary
            contract_pairs: Optional ContractPairs turned into Consistency edges

        Returns:
            ImpactResult ordered by (layer, dimension precedence, id)
        """
        changes = normalize_changes(changes)
        dims = tuple(sorted({Dimension(d) for d in dimensions}, key=_PRECEDENCE.get)) if dimensions else tuple(
            DIMENSION_PRECEDENCE)
        wanted = set(dims)
        direction = Direction(direction) if direction is not None else None
        if max_depth is not None and max_depth < 0:
            raise ValueError(f"max_depth must be non-negative, got {max_depth}")

        roots = sorted(k for k in changes if snapshot.has_entity(k))
        unknown = sorted(k for k in changes if not snapshot.has_entity(k))
        if unknown:
            logger.warning(f"Impact analysis: {len(unknown)} unknown entity ids: {', '.join(unknown)}")

        derived: Dict[str, List[Edge]] = defaultdict(list)
        if Dimension.CONSISTENCY in wanted:
            for edge in consistency_edges(contract_pairs):
                if snapshot.has_entity(edge.source) and snapshot.has_entity(edge.target):
                    derived[edge.source].append(edge)

        result = ImpactResult(changes=changes, unknown_ids=unknown, dimensions=dims,
                              max_depth=max_depth, snapshot_version=snapshot.version)
        visited = set(roots)
        reached: Dict[str, Tuple[str, Tuple[Edge, ...]]] = {r: (r, ()) for r in roots}
        frontier = roots
        depth = 0

        while frontier:
            if max_depth is not None and depth >= max_depth:
                break
            if is_cancelled(token):
                result.status = ScanStatus.CANCELLED
                logger.info(f"Impact analysis cancelled at layer {depth + 1}")
                break
            depth += 1

            candidates: Dict[str, Tuple[tuple, Edge, str]] = {}
            for current in frontier:
                for edge in self._edges_of(snapshot, current, derived):
                    if edge.dimension not in wanted:
                        continue
                    if edge.confidence < self.config.threshold_for(edge.dimension):
                        continue
                    if not self._follows(edge, current, direction):
                        continue
                    neighbor = edge.other(current)
                    if neighbor == current or neighbor in visited:
                        continue
                    rank = (_PRECEDENCE[edge.dimension], current, edge.key)
                    best = candidates.get(neighbor)
                    if best is None or rank < best[0]:
                        candidates[neighbor] = (rank, edge, current)

            layer_items = []
            for neighbor, (_, edge, parent) in candidates.items():
                root, chain = reached[parent]
                chain = chain + (edge,)
                reached[neighbor] = (root, chain)
                entity = snapshot.entity(neighbor)
                layer_items.append(ImpactedEntity(
                    entity_id=neighbor,
                    layer=depth,
                    dimension=edge.dimension,
                    root=root,
                    parent=parent,
                    chain=chain,
                    kind=entity.kind if entity else None,
                ))
            layer_items.sort(key=lambda i: (_PRECEDENCE[i.dimension], i.entity_id))
            result.impacted.extend(layer_items)
            visited.update(candidates)
            frontier = sorted(candidates)

        logger.debug(f"Impact analysis from {len(roots)} changes reached {len(result.impacted)} entities "
                     f"in {depth} layers ({result.status.value})")
        return result

    @staticmethod
    def _edges_of(snapshot, entity_id: str, derived: Dict[str, List[Edge]]) -> List[Edge]:
        return snapshot.neighbors(entity_id) + derived.get(entity_id, [])

    @staticmethod
    def _follows(edge: Edge, current: str, direction: Optional[Direction]) -> bool:
        if direction is None:
            return True
        propagates = edge.propagates_from(current)
        return propagates if direction == Direction.FORWARD else not propagates
