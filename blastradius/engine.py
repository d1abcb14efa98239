"""
ImpactEngine: the facade wiring configuration, extractors and the graph store.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .cancellation import ScanStatus
from .change_plan import ChangePlan, ChangePlanGenerator
from .config import EngineConfig, find_config_file, get_default_config, load_config
from .consistency import ConsistencyChecker, ConsistencyReport
from .extractors import ExtractorRegistry, default_registry
from .graph_store import GraphSnapshot, GraphStore
from .impact import ImpactAnalyzer, ImpactResult
from .persistence import GraphPersistence
from .report import build_report
from .scanner import ScanReport, ScanState, scan_files

logger = logging.getLogger(__name__)


class ImpactEngine:
    """
    Entry point for scanning files and querying change impact.

    Every query runs against one snapshot taken at call time, so it is never
    affected by a merge running concurrently.
    """

    def __init__(self, config: Optional[EngineConfig] = None, registry: Optional[ExtractorRegistry] = None,
                 store: Optional[GraphStore] = None, db_path: Optional[str] = None):
        self.config = config or get_default_config()
        self.registry = registry or default_registry(self.config.scan.get("extractor_patterns"))
        if store is None:
            persistence = None
            if db_path:
                persistence = GraphPersistence(db_path)
            store = GraphStore(persistence)
        self.store = store
        self.last_scan: Optional[ScanReport] = None
        self.scan_state = ScanState()

    @classmethod
    def from_config_file(cls, config_path: Optional[str] = None, start_path: str = ".",
                         **kwargs) -> "ImpactEngine":
        """Build an engine from an explicit config file or the nearest one above start_path."""
        config_path = config_path or find_config_file(start_path)
        return cls(config=load_config(config_path), **kwargs)

    # ================================
    # Scanning
    # ================================

    def scan(self, files: Mapping[str, str], token=None, jobs: Optional[int] = None) -> ScanReport:
        """Incrementally scan files (path -> content) into the graph."""
        jobs = jobs if jobs is not None else self.config.scan.get("jobs", 1)
        self.last_scan = scan_files(files, self.registry, self.store, jobs=jobs, token=token)
        self.scan_state.record(files, self.last_scan)
        return self.last_scan

    def rebuild(self, files: Mapping[str, str], token=None, jobs: Optional[int] = None) -> ScanReport:
        """Drop the whole graph and rebuild it from files."""
        jobs = jobs if jobs is not None else self.config.scan.get("jobs", 1)
        self.last_scan = scan_files(files, self.registry, self.store, jobs=jobs, token=token, rebuild=True)
        self.scan_state.reset()
        self.scan_state.record(files, self.last_scan)
        return self.last_scan

    def remove_file(self, file_path: str) -> bool:
        self.scan_state.forget(file_path)
        return self.store.remove_file(file_path)

    def snapshot(self) -> GraphSnapshot:
        return self.store.snapshot()

    # ================================
    # Queries
    # ================================

    def check_consistency(self, snapshot: Optional[GraphSnapshot] = None, declared_side: Optional[str] = None,
                          strict: bool = False) -> ConsistencyReport:
        snapshot = snapshot or self.snapshot()
        return ConsistencyChecker(self.config, strict=strict).check(snapshot, declared_side)

    def analyze_impact(self, changes, dimensions=None, max_depth: Optional[int] = None, direction=None,
                       token=None, snapshot: Optional[GraphSnapshot] = None,
                       consistency: Optional[ConsistencyReport] = None) -> ImpactResult:
        """
        Compute the impact of a change set.

        ContractPairs of the snapshot are added as Consistency edges, so a
        change on one side of a contract reaches the other side.
        """
        snapshot = snapshot or self.snapshot()
        if consistency is None:
            consistency = self.check_consistency(snapshot)
        return ImpactAnalyzer(self.config).analyze(
            snapshot, changes, dimensions=dimensions, max_depth=max_depth, direction=direction,
            token=token, contract_pairs=consistency.pairs,
        )

    def plan(self, impact: ImpactResult, consistency: Optional[ConsistencyReport] = None) -> ChangePlan:
        if consistency is None:
            consistency = self.check_consistency()
        return ChangePlanGenerator(self.config).generate(impact, consistency.pairs, consistency.declared_side)

    def report(self, change_sets: Iterable[Any] = (), dimensions=None, max_depth: Optional[int] = None,
               token=None) -> Dict[str, Any]:
        """
        Build the full report for the current graph and each change set.

        Args:
            change_sets: Iterable of ``{entity_id: ChangeKind}`` mappings
            dimensions: Dimension filter applied to every change set
            max_depth: Depth limit applied to every change set
            token: Optional CancellationToken shared by all traversals
        """
        snapshot = self.snapshot()
        consistency = self.check_consistency(snapshot)
        impacts: List[ImpactResult] = []
        plans: List[ChangePlan] = []
        for changes in change_sets:
            impact = self.analyze_impact(changes, dimensions=dimensions, max_depth=max_depth, token=token,
                                         snapshot=snapshot, consistency=consistency)
            impacts.append(impact)
            plans.append(ChangePlanGenerator(self.config).generate(
                impact, consistency.pairs, consistency.declared_side))

        report = build_report(snapshot, consistency, impacts, plans, scan=self.scan_state)
        if report["status"] == ScanStatus.CANCELLED.value:
            logger.info("Report built from partial (cancelled) results")
        return report

    def critical_entities(self) -> List[Dict[str, object]]:
        return self.snapshot().critical_entities(self.config.critical_dependents_threshold)
