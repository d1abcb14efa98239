"""
Scan pipeline: parallel extraction followed by one batch merge.

Each file is extracted independently (one task per file). Per-file problems
never abort the scan: unparseable files are excluded from the merge and keep
their last good contribution, rejected merges are recorded as FileErrors,
and both are listed as gaps in the scan report.
"""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .cancellation import ScanStatus, is_cancelled
from .extractors import ExtractorRegistry
from .graph_store import FileError, GraphStore
from .types import ParseDiagnostic, ScanResult

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    """Outcome of one scan over a file set."""
    status: ScanStatus = ScanStatus.COMPLETED
    merged: List[str] = field(default_factory=list)
    diagnostics: List[ParseDiagnostic] = field(default_factory=list)
    errors: List[FileError] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)     # files with error diagnostics
    unhandled: List[str] = field(default_factory=list)    # no extractor matched
    not_scanned: List[str] = field(default_factory=list)  # skipped after cancellation
    graph_version: int = 0
    metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def gaps(self) -> List[Dict[str, str]]:
        """Files whose current content is not reflected in the graph."""
        gaps = [{"file_path": p, "reason": "parse_error"} for p in self.excluded]
        gaps.extend({"file_path": e.file_path, "reason": e.error_type} for e in self.errors)
        gaps.extend({"file_path": p, "reason": "cancelled"} for p in self.not_scanned)
        return sorted(gaps, key=lambda g: (g["file_path"], g["reason"]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "graph_version": self.graph_version,
            "merged": list(self.merged),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "errors": [e.to_dict() for e in self.errors],
            "unhandled": list(self.unhandled),
            "gaps": self.gaps,
            "metrics": dict(self.metrics),
        }


class ScanState:
    """
    Diagnostics and gaps still outstanding across scans.

    A file's entry is replaced each time the file is scanned again, so an
    unparseable file stays listed until a scan fixes it, however many scans
    of other files run in between.
    """

    def __init__(self):
        self.status = ScanStatus.COMPLETED  # status of the latest scan
        self._diagnostics: Dict[str, List[ParseDiagnostic]] = {}
        self._gaps: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def record(self, files: Iterable[str], report: ScanReport):
        """Replace the entries of every file the scan looked at."""
        with self._lock:
            self.status = report.status
            skipped = set(report.not_scanned)
            for path in files:
                if path not in skipped:
                    self._diagnostics.pop(path, None)
                    self._gaps.pop(path, None)
            for diagnostic in report.diagnostics:
                self._diagnostics.setdefault(diagnostic.file_path, []).append(diagnostic)
            for gap in report.gaps:
                reasons = self._gaps.setdefault(gap["file_path"], [])
                if gap["reason"] not in reasons:
                    reasons.append(gap["reason"])

    def forget(self, file_path: str):
        with self._lock:
            self._diagnostics.pop(file_path, None)
            self._gaps.pop(file_path, None)

    def reset(self):
        with self._lock:
            self.status = ScanStatus.COMPLETED
            self._diagnostics.clear()
            self._gaps.clear()

    @property
    def diagnostics(self) -> List[ParseDiagnostic]:
        with self._lock:
            return [d for path in sorted(self._diagnostics) for d in self._diagnostics[path]]

    @property
    def gaps(self) -> List[Dict[str, str]]:
        with self._lock:
            return sorted(({"file_path": path, "reason": reason}
                           for path, reasons in self._gaps.items() for reason in reasons),
                          key=lambda g: (g["file_path"], g["reason"]))


def extract_file(registry: ExtractorRegistry, store: GraphStore, file_path: str, content: str,
                 token=None) -> Tuple[str, Optional[ScanResult]]:
    """
    Extract one file.

    Returns:
        (state, result) where state is ``cancelled``, ``unhandled`` or ``extracted``
    """
    if is_cancelled(token):
        return "cancelled", None
    # Reserved before extraction so a scan started later always carries a higher version
    version = store.reserve_version(file_path)
    result = registry.extract(content, file_path)
    if result is None:
        return "unhandled", None
    return "extracted", result.with_version(version)


def scan_files(files: Mapping[str, str], registry: ExtractorRegistry, store: GraphStore,
               jobs: int = 1, token=None, rebuild: bool = False) -> ScanReport:
    """
    Extract a set of files and merge the results into the store.

    Args:
        files: File path -> content (already materialized)
        registry: Extractor registry
        store: Graph store to merge into
        jobs: Number of extraction workers (<= 1 runs sequentially)
        token: Optional CancellationToken, checked before each file's extraction
        rebuild: Replace the whole graph instead of merging incrementally

    Returns:
        ScanReport with merged files, diagnostics, errors and gaps
    """
    start = time.perf_counter()
    paths = sorted(files)
    report = ScanReport()

    if jobs <= 1:
        outputs = [extract_file(registry, store, path, files[path], token) for path in paths]
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=jobs) as executor:
            futures = {
                path: executor.submit(extract_file, registry, store, path, files[path], token)
                for path in paths
            }
            # Collect results in path order
            outputs = [futures[path].result() for path in paths]
    extract_ms = (time.perf_counter() - start) * 1000

    mergeable: List[ScanResult] = []
    for path, (state, result) in zip(paths, outputs):
        if state == "cancelled":
            report.not_scanned.append(path)
            continue
        if state == "unhandled":
            report.unhandled.append(path)
            logger.debug(f"No extractor handles {path}")
            continue
        report.diagnostics.extend(result.diagnostics)
        if result.has_errors:
            report.excluded.append(path)
            logger.warning(f"Excluded {path} from merge: {sum(d.severity == 'error' for d in result.diagnostics)} "
                           f"error diagnostics")
            continue
        mergeable.append(result)

    merge_start = time.perf_counter()
    outcome = store.rebuild(mergeable) if rebuild else store.merge_batch(mergeable)
    report.merged = outcome.merged
    report.errors = outcome.errors
    report.graph_version = outcome.graph_version

    if report.not_scanned:
        report.status = ScanStatus.CANCELLED

    report.metrics = {
        "extract_ms": round(extract_ms, 3),
        "merge_ms": round((time.perf_counter() - merge_start) * 1000, 3),
        "total_ms": round((time.perf_counter() - start) * 1000, 3),
    }
    logger.info(f"Scanned {len(paths)} files: {len(report.merged)} merged, {len(report.excluded)} excluded, "
                f"{len(report.errors)} rejected, {len(report.not_scanned)} not scanned ({report.status.value})")
    return report
