"""
Tests for the scan pipeline: failure isolation, cancellation and determinism.
"""

from typing import Tuple

import pytest

from blastradius.cancellation import CancellationToken, ScanStatus
from blastradius.extractors import Extractor, ExtractorRegistry, ExtractorRole, default_registry
from blastradius.errors import StaleScanError
from blastradius.graph_store import GraphStore
from blastradius.scanner import extract_file, scan_files
from blastradius.types import ScanResult

from helpers import MANIFEST_FILES, fn


GOOD_MANIFEST = """
entities:
  - {name: handler, kind: Function, file: src/handler.py}
"""

OTHER_MANIFEST = """
entities:
  - {name: job, kind: Function, file: src/job.py}
edges:
  - {from: job, to: "src/handler.py::Function::handler", dimension: Reference}
"""

OLD_FN_MANIFEST = """
entities:
  - {name: old_fn, kind: Function, file: src/a.py}
"""

NEW_FN_MANIFEST = """
entities:
  - {name: new_fn, kind: Function, file: src/a.py}
"""


class CancellingExtractor(Extractor):
    """Cancels the scan's token while extracting a given file."""

    def __init__(self, token: CancellationToken, cancel_on: str):
        self.token = token
        self.cancel_on = cancel_on

    @property
    def name(self) -> str:
        return "cancelling"

    @property
    def roles(self) -> Tuple[ExtractorRole, ...]:
        return (ExtractorRole.REFERENCE,)

    @property
    def file_patterns(self) -> Tuple[str, ...]:
        return ("*.txt",)

    def extract(self, content: str, file_path: str) -> ScanResult:
        if file_path == self.cancel_on:
            self.token.cancel()
        return ScanResult(file_path, (fn(content, file_path),))


class TestScanIsolation:
    """One broken file never hides the others."""

    def test_unparseable_file_yields_one_diagnostic(self):
        store = GraphStore()
        files = {
            "a.impact.yml": GOOD_MANIFEST,
            "b.impact.yml": "entities: [oops",
            "c.impact.yml": OTHER_MANIFEST,
        }

        report = scan_files(files, default_registry(), store)

        assert report.status == ScanStatus.COMPLETED
        assert report.merged == ["a.impact.yml", "c.impact.yml"]
        assert len(report.diagnostics) == 1
        assert report.diagnostics[0].file_path == "b.impact.yml"
        assert report.gaps == [{"file_path": "b.impact.yml", "reason": "parse_error"}]
        assert store.snapshot().entity_ids() == {"src/handler.py::Function::handler", "src/job.py::Function::job"}
        assert len(store.snapshot().edges()) == 1

    def test_broken_rescan_keeps_last_good_contribution(self):
        store = GraphStore()
        registry = default_registry()
        scan_files({"a.impact.yml": GOOD_MANIFEST}, registry, store)

        report = scan_files({"a.impact.yml": "entities: [oops"}, registry, store)

        assert report.excluded == ["a.impact.yml"]
        assert store.snapshot().entity_ids() == {"src/handler.py::Function::handler"}

    def test_rejected_merge_is_a_gap(self):
        store = GraphStore()
        report = scan_files({"c.impact.yml": OTHER_MANIFEST}, default_registry(), store)

        assert report.merged == []
        assert [e.error_type for e in report.errors] == ["DanglingEdgeError"]
        assert report.gaps == [{"file_path": "c.impact.yml", "reason": "DanglingEdgeError"}]

    def test_files_without_extractor_are_listed(self):
        store = GraphStore()
        report = scan_files({"README.md": "# hi", "a.impact.yml": GOOD_MANIFEST}, default_registry(), store)

        assert report.unhandled == ["README.md"]
        assert report.gaps == []


class TestScanDeterminism:
    """Parallel and sequential scans build the same graph."""

    def test_parallel_matches_sequential(self):
        sequential, parallel = GraphStore(), GraphStore()
        scan_files(MANIFEST_FILES, default_registry(), sequential, jobs=1)
        report = scan_files(MANIFEST_FILES, default_registry(), parallel, jobs=4)

        assert report.merged == sorted(MANIFEST_FILES)
        assert sequential.snapshot().entities() == parallel.snapshot().entities()
        assert sequential.snapshot().edges() == parallel.snapshot().edges()

    def test_unchanged_rescan_is_stable(self):
        store = GraphStore()
        registry = default_registry()
        scan_files(MANIFEST_FILES, registry, store)
        first = store.snapshot()

        scan_files(MANIFEST_FILES, registry, store)
        second = store.snapshot()

        assert first.entities() == second.entities()
        assert first.edges() == second.edges()
        assert second.version > first.version

    def test_rebuild(self):
        store = GraphStore()
        registry = default_registry()
        scan_files(MANIFEST_FILES, registry, store)

        report = scan_files({"a.impact.yml": GOOD_MANIFEST}, registry, store, rebuild=True)

        assert report.merged == ["a.impact.yml"]
        assert store.snapshot().entity_ids() == {"src/handler.py::Function::handler"}


class TestScanCancellation:
    """Cancellation returns a partial result, never an empty one."""

    def test_cancel_mid_scan(self):
        token = CancellationToken()
        registry = ExtractorRegistry()
        registry.register(CancellingExtractor(token, cancel_on="b.txt"))
        store = GraphStore()

        report = scan_files({"a.txt": "one", "b.txt": "two", "c.txt": "three"}, registry, store,
                            jobs=1, token=token)

        assert report.status == ScanStatus.CANCELLED
        assert report.merged == ["a.txt", "b.txt"]
        assert report.not_scanned == ["c.txt"]
        assert {"file_path": "c.txt", "reason": "cancelled"} in report.gaps
        assert len(store.snapshot().entities()) == 2

    def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        report = scan_files({"a.impact.yml": GOOD_MANIFEST}, default_registry(), GraphStore(), token=token)

        assert report.status == ScanStatus.CANCELLED
        assert report.not_scanned == ["a.impact.yml"]
        assert report.merged == []


class TestOverlappingScans:
    """Of two overlapping rescans of one file, the one started later wins."""

    def setup_method(self):
        self.store = GraphStore()
        registry = default_registry()
        _, self.older = extract_file(registry, self.store, "a.impact.yml", OLD_FN_MANIFEST)
        _, self.newer = extract_file(registry, self.store, "a.impact.yml", NEW_FN_MANIFEST)

    def test_later_scan_gets_higher_version(self):
        assert (self.older.scan_version, self.newer.scan_version) == (1, 2)
        assert self.store.next_version("a.impact.yml") == 3

    def test_older_scan_committing_first_is_replaced(self):
        assert self.store.merge(self.older) == 1
        assert self.store.merge(self.newer) == 2
        assert self.store.snapshot().entity_ids() == {"src/a.py::Function::new_fn"}

    def test_older_scan_committing_last_is_stale(self):
        self.store.merge(self.newer)

        with pytest.raises(StaleScanError):
            self.store.merge(self.older)

        assert self.store.snapshot().entity_ids() == {"src/a.py::Function::new_fn"}
