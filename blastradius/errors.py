"""
Error taxonomy for the blastradius engine.

Per-file problems (duplicate ids, dangling edges, stale scans) are raised by
the graph store and collected by the scan pipeline as data; configuration and
storage errors are fatal and propagate to the caller.
"""

from typing import Optional


class BlastRadiusError(Exception):
    """Base class for all engine errors."""


class InvalidEntityError(BlastRadiusError, ValueError):
    """Raised when an entity record is malformed."""


class InvalidEdgeError(BlastRadiusError, ValueError):
    """Raised when an edge record is malformed."""


class MergeError(BlastRadiusError):
    """Base class for errors that reject one file's merge."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        super().__init__(message)
        self.file_path = file_path


class DuplicateIdError(MergeError):
    """An entity id collides with a different (kind, language) pair."""

    def __init__(self, entity_id: str, existing: tuple, incoming: tuple,
                 file_path: Optional[str] = None, owner: Optional[str] = None):
        where = f" (declared by {owner})" if owner else ""
        super().__init__(
            f"Entity id '{entity_id}' is already registered as {existing[0]}/{existing[1]}{where}, "
            f"cannot redeclare it as {incoming[0]}/{incoming[1]}",
            file_path,
        )
        self.entity_id = entity_id
        self.existing = existing
        self.incoming = incoming
        self.owner = owner


class DanglingEdgeError(MergeError):
    """An edge references an entity that is not in the graph."""

    def __init__(self, source: str, target: str, missing: str, file_path: Optional[str] = None):
        super().__init__(f"Edge {source} -> {target} references unknown entity '{missing}'", file_path)
        self.source = source
        self.target = target
        self.missing = missing


class StaleScanError(MergeError):
    """A scan result is not newer than the version already merged for its file."""

    def __init__(self, file_path: str, scan_version: int, current_version: int):
        super().__init__(
            f"Stale scan for {file_path}: version {scan_version} is not newer than {current_version}",
            file_path,
        )
        self.scan_version = scan_version
        self.current_version = current_version


class DuplicateRouteError(BlastRadiusError):
    """More than one backend entity registers the same contract family key."""

    def __init__(self, key: str, entity_ids: list):
        super().__init__(f"Contract key {key} is registered by {len(entity_ids)} backend entities: "
                         f"{', '.join(entity_ids)}")
        self.key = key
        self.entity_ids = list(entity_ids)


class ConfigError(BlastRadiusError):
    """Configuration is malformed. Fatal for the whole scan."""


class StorageError(BlastRadiusError):
    """Persistent graph storage failed. Fatal for the whole scan."""
