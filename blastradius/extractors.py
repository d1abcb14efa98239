"""
Extractor adapter contract and registry.

Language and format plugins implement the Extractor interface to turn one
file's content into entities, edges and diagnostics. The core only defines
the contract; language-specific extraction lives outside this package.
"""

import fnmatch
import logging
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .types import ParseDiagnostic, ScanResult, combine_results

logger = logging.getLogger(__name__)


class ExtractorRole(str, Enum):
    """Conceptual role an extractor plays in building the graph."""
    REFERENCE = "reference"    # calls and imports
    DATA_FLOW = "data_flow"    # serialization/consumption sites matched by field names
    CONTRACT = "contract"      # routes, type/interface and validation-schema declarations
    CONFIG = "config"          # config-key declarations and lookup sites
    TEST = "test"              # test entities referencing the above


class Extractor(ABC):
    """
    Abstract base class for extractor adapters.

    Implementations must be pure: no shared mutable state across calls, so
    files can be extracted concurrently. On a parse problem they return the
    partial result plus diagnostics instead of raising.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the extractor identifier (e.g. 'manifest')."""
        pass

    @property
    @abstractmethod
    def roles(self) -> Tuple[ExtractorRole, ...]:
        """Return the roles this extractor covers."""
        pass

    @property
    @abstractmethod
    def file_patterns(self) -> Tuple[str, ...]:
        """Return glob patterns of files this extractor handles (e.g. ('*.impact.yml',))."""
        pass

    @abstractmethod
    def extract(self, content: str, file_path: str) -> ScanResult:
        """Extract entities and edges from one file's content."""
        pass

    def handles(self, file_path: str) -> bool:
        """Check whether a file matches one of this extractor's patterns."""
        normalized = file_path.replace(os.sep, "/")
        base = os.path.basename(normalized)
        return any(fnmatch.fnmatch(normalized, p) or fnmatch.fnmatch(base, p) for p in self.file_patterns)


def run_extractor(extractor: Extractor, content: str, file_path: str) -> ScanResult:
    """
    Run an extractor behind the failure boundary.

    An exception escaping the extractor becomes an error-severity diagnostic;
    nothing is raised to the caller.
    """
    try:
        result = extractor.extract(content, file_path)
    except Exception as e:
        logger.warning(f"Extractor '{extractor.name}' failed on {file_path}: {e}")
        return ScanResult(file_path, diagnostics=(ParseDiagnostic(
            file_path=file_path,
            message=f"{type(e).__name__}: {e}",
            severity="error",
            extractor=extractor.name,
        ),))
    if not isinstance(result, ScanResult):
        return ScanResult(file_path, diagnostics=(ParseDiagnostic(
            file_path=file_path,
            message=f"Extractor returned {type(result).__name__} instead of ScanResult",
            severity="error",
            extractor=extractor.name,
        ),))
    if result.file_path != file_path:
        result = ScanResult(file_path, result.entities, result.edges, result.diagnostics, result.scan_version)
    return result


class ExtractorRegistry:
    """Registry of extractor adapters, looked up by file path."""

    def __init__(self):
        self._extractors: Dict[str, Extractor] = {}

    def register(self, extractor: Extractor, patterns: Optional[List[str]] = None) -> None:
        """
        Register an extractor. Silently skips if the name is already registered.

        Args:
            extractor: Extractor instance
            patterns: Optional override of the extractor's file patterns
        """
        if extractor.name in self._extractors:
            return
        if patterns is not None:
            extractor = _PatternOverride(extractor, tuple(patterns))
        self._extractors[extractor.name] = extractor

    def get(self, name: str) -> Optional[Extractor]:
        return self._extractors.get(name)

    def names(self) -> List[str]:
        return sorted(self._extractors)

    def extractors_for(self, file_path: str) -> List[Extractor]:
        """All extractors whose patterns match the file, in name order."""
        return [self._extractors[n] for n in sorted(self._extractors) if self._extractors[n].handles(file_path)]

    def extract(self, content: str, file_path: str) -> Optional[ScanResult]:
        """
        Run every matching extractor over one file and combine the results.

        Returns:
            Combined ScanResult, or None if no extractor handles the file
        """
        extractors = self.extractors_for(file_path)
        if not extractors:
            logger.debug(f"No extractor found for file: {file_path}")
            return None
        results = [run_extractor(extractor, content, file_path) for extractor in extractors]
        if len(results) == 1:
            return results[0]
        return combine_results(file_path, results)

    def clear(self) -> None:
        """Clear all registered extractors (mainly for testing)."""
        self._extractors.clear()


class _PatternOverride(Extractor):
    """Wraps an extractor with configured file patterns."""

    def __init__(self, inner: Extractor, patterns: Tuple[str, ...]):
        self._inner = inner
        self._patterns = patterns

    @property
    def name(self) -> str:
        return self._inner.name

    @property
    def roles(self) -> Tuple[ExtractorRole, ...]:
        return self._inner.roles

    @property
    def file_patterns(self) -> Tuple[str, ...]:
        return self._patterns

    def extract(self, content: str, file_path: str) -> ScanResult:
        return self._inner.extract(content, file_path)


def default_registry(extractor_patterns: Optional[Dict[str, List[str]]] = None) -> ExtractorRegistry:
    """
    Build a registry with the bundled format-level extractors.

    Args:
        extractor_patterns: Optional name -> glob patterns overrides (from config ``scan.extractor_patterns``)
    """
    from .config_adapter import default_yaml_config_extractor
    from .manifest_adapter import default_manifest_extractor

    extractor_patterns = extractor_patterns or {}
    registry = ExtractorRegistry()
    for extractor in (default_manifest_extractor, default_yaml_config_extractor):
        registry.register(extractor, extractor_patterns.get(extractor.name))
    return registry
