"""SQLite persistence for graph store file contributions."""

import json
import logging
import sqlite3
import threading
from typing import Dict, Iterable, List

from .errors import StorageError
from .graph_store import FileContribution
from .types import Edge, Entity

logger = logging.getLogger(__name__)


class GraphPersistence:
    """
    Stores each file's committed contribution (entities, edges, scan version).

    The rows of a merged batch are replaced in one transaction. Removed
    files keep their last scan version (``active = 0``) so stale scans are
    still rejected after a restart.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open graph database {self.db_path}: {e}") from e

    def _init_db(self):
        """Initialize SQLite database schema."""
        conn = self._connect()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS files (
                    path TEXT PRIMARY KEY,
                    scan_version INTEGER NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS entities (
                    file TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL  -- JSON blob
                );

                CREATE TABLE IF NOT EXISTS edges (
                    file TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    data TEXT NOT NULL  -- JSON blob
                );

                CREATE INDEX IF NOT EXISTS idx_entities_file ON entities(file);
                CREATE INDEX IF NOT EXISTS idx_edges_file ON edges(file);
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialize graph database {self.db_path}: {e}") from e
        finally:
            conn.close()

    def replace_files(self, contributions: Iterable[FileContribution]) -> None:
        """Replace the rows of several files in a single transaction; all or none are written."""
        contributions = list(contributions)
        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    for contribution in contributions:
                        self._write_contribution(conn, contribution)
            except sqlite3.Error as e:
                paths = ", ".join(c.file_path for c in contributions)
                raise StorageError(f"Failed to persist {paths}: {e}") from e
            finally:
                conn.close()

    @staticmethod
    def _write_contribution(conn: sqlite3.Connection, contribution: FileContribution):
        conn.execute("DELETE FROM entities WHERE file = ?", (contribution.file_path,))
        conn.execute("DELETE FROM edges WHERE file = ?", (contribution.file_path,))
        conn.execute(
            "INSERT OR REPLACE INTO files (path, scan_version, active) VALUES (?, ?, 1)",
            (contribution.file_path, contribution.scan_version),
        )
        conn.executemany(
            "INSERT INTO entities (file, id, data) VALUES (?, ?, ?)",
            [(contribution.file_path, e.id, json.dumps(e.to_dict())) for e in contribution.entities],
        )
        conn.executemany(
            "INSERT INTO edges (file, seq, data) VALUES (?, ?, ?)",
            [(contribution.file_path, i, json.dumps(e.to_dict())) for i, e in enumerate(contribution.edges)],
        )

    def delete_file(self, file_path: str) -> None:
        """Drop a file's rows but keep its scan version."""
        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    conn.execute("DELETE FROM entities WHERE file = ?", (file_path,))
                    conn.execute("DELETE FROM edges WHERE file = ?", (file_path,))
                    conn.execute("UPDATE files SET active = 0 WHERE path = ?", (file_path,))
            except sqlite3.Error as e:
                raise StorageError(f"Failed to delete {file_path}: {e}") from e
            finally:
                conn.close()

    def clear(self) -> None:
        """Drop every contribution (scan versions are kept)."""
        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    conn.execute("DELETE FROM entities")
                    conn.execute("DELETE FROM edges")
                    conn.execute("UPDATE files SET active = 0")
            except sqlite3.Error as e:
                raise StorageError(f"Failed to clear graph database: {e}") from e
            finally:
                conn.close()

    def load_versions(self) -> Dict[str, int]:
        """Last committed scan version per file, including removed files."""
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT path, scan_version FROM files").fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to load scan versions: {e}") from e
            finally:
                conn.close()
        return {path: version for path, version in rows}

    def load_contributions(self) -> List[FileContribution]:
        """Load the contributions of all active files, in path order."""
        with self._lock:
            conn = self._connect()
            try:
                files = conn.execute(
                    "SELECT path, scan_version FROM files WHERE active = 1 ORDER BY path").fetchall()
                entity_rows = conn.execute("SELECT file, data FROM entities ORDER BY file, rowid").fetchall()
                edge_rows = conn.execute("SELECT file, data FROM edges ORDER BY file, seq").fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to load graph database: {e}") from e
            finally:
                conn.close()

        entities: Dict[str, List[Entity]] = {}
        edges: Dict[str, List[Edge]] = {}
        try:
            for file_path, data in entity_rows:
                entities.setdefault(file_path, []).append(Entity.from_dict(json.loads(data)))
            for file_path, data in edge_rows:
                edges.setdefault(file_path, []).append(Edge.from_dict(json.loads(data)))
        except (ValueError, KeyError) as e:
            raise StorageError(f"Corrupt record in graph database {self.db_path}: {e}") from e

        contributions = [
            FileContribution(path, version, tuple(entities.get(path, ())), tuple(edges.get(path, ())))
            for path, version in files
        ]
        logger.info(f"Loaded {len(contributions)} file contributions from {self.db_path}")
        return contributions
