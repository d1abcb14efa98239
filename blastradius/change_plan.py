"""
Change plan generation.

Turns an ImpactResult into ordered sections (Contract, DataFlow, Reference,
Test) and classifies the overall plan into a strategy. Classification is a
pure function of counts and configured thresholds.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .config import EngineConfig, get_default_config
from .consistency import ContractPair, MismatchKind
from .impact import ImpactedEntity, ImpactResult
from .types import ChangeKind, Dimension, EntityKind, Layer

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    FULL_SYNC = "full-sync"
    PROGRESSIVE_COMPATIBILITY = "progressive-compatibility"
    REFACTOR_FLAGGED = "refactor-flagged"


class PlanSection(str, Enum):
    CONTRACT = "Contract"
    DATA_FLOW = "DataFlow"
    REFERENCE = "Reference"
    TEST = "Test"


SECTION_ORDER = (PlanSection.CONTRACT, PlanSection.DATA_FLOW, PlanSection.REFERENCE, PlanSection.TEST)

_SECTION_BY_DIMENSION = {
    Dimension.CONTRACT: PlanSection.CONTRACT,
    Dimension.CONSISTENCY: PlanSection.CONTRACT,
    Dimension.DATA_FLOW: PlanSection.DATA_FLOW,
    Dimension.REFERENCE: PlanSection.REFERENCE,
    Dimension.CONFIG: PlanSection.REFERENCE,
}

ADDITIVE_MISMATCHES = frozenset({MismatchKind.MISSING_FIELD, MismatchKind.EXTRA_FIELD})
BREAKING_MISMATCHES = frozenset({MismatchKind.TYPE_MISMATCH, MismatchKind.ROUTE_MISMATCH})


@dataclass(frozen=True)
class PlanStep:
    """One entity to update, with the reason it is in the plan."""
    entity_id: str
    section: PlanSection
    layer: int
    dimension: Dimension
    parent: str
    root: str
    config_reader: Optional[str] = None  # set for config keys placed after the entity reading them

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "section": self.section.value,
            "layer": self.layer,
            "dimension": self.dimension.value,
            "parent": self.parent,
            "root": self.root,
            "config_reader": self.config_reader,
        }


@dataclass
class ChangePlan:
    strategy: Strategy
    reasons: List[str]
    sections: Dict[PlanSection, List[PlanStep]] = field(default_factory=dict)
    impacted_count: int = 0
    relevant_pairs: int = 0
    affected_pairs: int = 0
    mismatch_kinds: List[str] = field(default_factory=list)

    @property
    def steps(self) -> List[PlanStep]:
        return [step for section in SECTION_ORDER for step in self.sections.get(section, [])]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "reasons": list(self.reasons),
            "impacted_count": self.impacted_count,
            "relevant_pairs": self.relevant_pairs,
            "affected_pairs": self.affected_pairs,
            "mismatch_kinds": list(self.mismatch_kinds),
            "sections": [
                {"section": section.value, "steps": [s.to_dict() for s in self.sections.get(section, [])]}
                for section in SECTION_ORDER
            ],
        }


def classify_plan(impacted_count: int, relevant_pairs: int, affected_pairs: int,
                  mismatch_kinds: Iterable[MismatchKind], has_removal: bool,
                  thresholds: Dict[str, Any], removed_fields: Iterable[str] = ()) -> Tuple[Strategy, List[str]]:
    """
    Classify a change plan.

    Args:
        impacted_count: Number of impacted entities
        relevant_pairs: ContractPairs touching the changed or impacted entities
        affected_pairs: Relevant pairs with at least one mismatch
        mismatch_kinds: Mismatch kinds found on the relevant pairs
        has_removal: True if any change is a removal
        thresholds: ``plan_thresholds`` configuration section
        removed_fields: ``entity_id.field`` names a changed entity no longer
            declares while its contract counterpart still does

    Returns:
        (strategy, reasons)
    """
    kinds = set(mismatch_kinds)
    removed_fields = sorted(removed_fields)
    full_sync_max = thresholds["full_sync_max_impacted"]
    refactor_min = thresholds["refactor_min_impacted"]
    max_ratio = thresholds["refactor_mismatch_ratio"]
    ratio = affected_pairs / relevant_pairs if relevant_pairs else 0.0

    reasons = []
    if impacted_count > refactor_min:
        reasons.append(f"{impacted_count} impacted entities exceed the refactor threshold of {refactor_min}")
    if ratio > max_ratio:
        reasons.append(f"{affected_pairs} of {relevant_pairs} contract pairs have mismatches "
                       f"({ratio:.0%} > {max_ratio:.0%})")
    if reasons:
        return Strategy.REFACTOR_FLAGGED, reasons

    breaking = sorted(k.value for k in kinds & BREAKING_MISMATCHES)
    if impacted_count < full_sync_max and not breaking:
        return Strategy.FULL_SYNC, [
            f"{impacted_count} impacted entities are below the full-sync threshold of {full_sync_max}",
            "no type or route mismatches",
        ]

    if not has_removal and not removed_fields and kinds <= ADDITIVE_MISMATCHES:
        return Strategy.PROGRESSIVE_COMPATIBILITY, [
            "changes are additive: no removals and only missing/extra field mismatches",
        ]

    if breaking:
        reasons.append(f"breaking mismatches present: {', '.join(breaking)}")
    if has_removal:
        reasons.append("change set removes entities")
    if removed_fields:
        reasons.append(f"change set removes contract fields: {', '.join(removed_fields)}")
    other = sorted(k.value for k in kinds - ADDITIVE_MISMATCHES - BREAKING_MISMATCHES)
    if other:
        reasons.append(f"non-additive mismatches present: {', '.join(other)}")
    return Strategy.REFACTOR_FLAGGED, reasons


class ChangePlanGenerator:
    """Builds ordered, classified change plans from impact results."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or get_default_config()

    def generate(self, impact: ImpactResult, contract_pairs: Iterable[ContractPair] = (),
                 declared_side: Optional[str] = None) -> ChangePlan:
        touched: Set[str] = set(impact.changes) | set(impact.impacted_ids)
        relevant = [p for p in contract_pairs if p.touches(touched)]
        affected = [p for p in relevant if p.has_mismatches]
        kinds = {m.kind for p in relevant for m in p.mismatches}
        has_removal = any(kind == ChangeKind.REMOVED for kind in impact.changes.values())
        removed_fields = self._removed_fields(relevant, impact.changes, declared_side)

        strategy, reasons = classify_plan(
            impacted_count=len(impact.impacted),
            relevant_pairs=len(relevant),
            affected_pairs=len(affected),
            mismatch_kinds=kinds,
            has_removal=has_removal,
            thresholds=self.config.plan_thresholds,
            removed_fields=removed_fields,
        )
        if impact.cancelled:
            reasons.append("impact analysis was cancelled; the plan covers a partial result")

        plan = ChangePlan(
            strategy=strategy,
            reasons=reasons,
            sections=self._order(impact),
            impacted_count=len(impact.impacted),
            relevant_pairs=len(relevant),
            affected_pairs=len(affected),
            mismatch_kinds=sorted(k.value for k in kinds),
        )
        logger.info(f"Change plan: {strategy.value} for {plan.impacted_count} impacted entities")
        return plan

    def _removed_fields(self, pairs: List[ContractPair], changes, declared_side: Optional[str]) -> List[str]:
        """
        Fields a changed entity lacks while its contract counterpart has them.

        MissingField means the counterpart of the declared side lacks the
        field, ExtraField means the declared side lacks it. Either counts as a
        removal when the side lacking the field is part of the change set.
        """
        side = Layer(declared_side or self.config.contracts.get("declared_side", Layer.FRONTEND.value))
        removed = set()
        for pair in pairs:
            declared, counterpart = pair.frontend, pair.backend
            if side == Layer.BACKEND:
                declared, counterpart = counterpart, declared
            for mismatch in pair.mismatches:
                if mismatch.kind == MismatchKind.MISSING_FIELD:
                    lacking = counterpart
                elif mismatch.kind == MismatchKind.EXTRA_FIELD:
                    lacking = declared
                else:
                    continue
                if lacking in changes and changes[lacking] != ChangeKind.ADDED:
                    removed.add(f"{lacking}.{mismatch.field}")
        return sorted(removed)

    def _order(self, impact: ImpactResult) -> Dict[PlanSection, List[PlanStep]]:
        sections: Dict[PlanSection, List[ImpactedEntity]] = {s: [] for s in SECTION_ORDER}
        # reader entity id -> config keys it reads
        anchored: Dict[str, List[ImpactedEntity]] = defaultdict(list)

        for item in impact.impacted:
            if item.kind == EntityKind.CONFIG_KEY and item.dimension == Dimension.CONFIG:
                anchored[item.parent].append(item)
            elif item.kind == EntityKind.TEST:
                sections[PlanSection.TEST].append(item)
            else:
                sections[_SECTION_BY_DIMENSION[item.dimension]].append(item)

        def expand(item: ImpactedEntity, section: PlanSection, reader: Optional[str]) -> List[PlanStep]:
            steps = [PlanStep(item.entity_id, section, item.layer, item.dimension, item.parent, item.root, reader)]
            for key in sorted(anchored.pop(item.entity_id, []), key=lambda i: i.entity_id):
                steps.extend(expand(key, section, item.entity_id))
            return steps

        ordered: Dict[PlanSection, List[PlanStep]] = {}
        for section in SECTION_ORDER:
            steps: List[PlanStep] = []
            if section == PlanSection.REFERENCE:
                for root in sorted(impact.changes):
                    for key in sorted(anchored.pop(root, []), key=lambda i: i.entity_id):
                        steps.extend(expand(key, section, root))
            for item in sorted(sections[section], key=lambda i: (i.layer, i.entity_id)):
                steps.extend(expand(item, section, None))
            ordered[section] = steps

        # Readers that were not placed (should not happen on a complete result)
        for reader in sorted(anchored):
            for key in sorted(anchored.pop(reader, []), key=lambda i: i.entity_id):
                ordered[PlanSection.REFERENCE].extend(expand(key, PlanSection.REFERENCE, reader))
        return ordered
