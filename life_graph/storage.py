"""SQLite storage layer for the entity/relationship graph.

Single-file database with:
* ``entities``: one row per node, components kept as a JSON object in ``data``
* ``relationships``: typed, weighted, directed edges, unique per
  ``(owner_id, source_entity_id, target_entity_id, type)`` and removed with
  either endpoint (``ON DELETE CASCADE``)
* Auto-create schema on first use

Entity resolution is exact-match on ``(owner_id, primary_name[, type])``.
There is no uniqueness constraint on that key, so concurrent identical
find-or-create calls can produce duplicates.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

DIRECTIONS = ("outgoing", "incoming", "both")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    type TEXT NOT NULL,
    primary_name TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entities_owner_name ON entities(owner_id, primary_name);
CREATE INDEX IF NOT EXISTS idx_entities_owner_type ON entities(owner_id, type);

CREATE TABLE IF NOT EXISTS relationships (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    source_entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    target_entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    strength REAL NOT NULL DEFAULT 1.0,
    metadata TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    UNIQUE (owner_id, source_entity_id, target_entity_id, type)
);

CREATE INDEX IF NOT EXISTS idx_rel_source ON relationships(source_entity_id);
CREATE INDEX IF NOT EXISTS idx_rel_target ON relationships(target_entity_id);
CREATE INDEX IF NOT EXISTS idx_rel_owner_type ON relationships(owner_id, type)
"""

_READ_ONLY_SQL = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)


def _entity_row(row: sqlite3.Row) -> Dict[str, Any]:
    d = dict(row)
    d["data"] = json.loads(d.get("data") or "{}")
    return d


def _relationship_row(row: sqlite3.Row) -> Dict[str, Any]:
    d = dict(row)
    raw = d.get("metadata")
    d["metadata"] = json.loads(raw) if raw else None
    return d


class GraphStore:
    """SQLite-backed entity/relationship store."""

    def __init__(self, db_path: Optional[str] = None, max_query_rows: Optional[int] = None) -> None:
        from .config import load_config

        cfg = load_config()
        self.db_path = db_path or cfg.db_path
        self.max_query_rows = max_query_rows or cfg.query_max_rows

        # Ensure parent directory exists
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            # Shared across worker threads; every use is serialised by self._lock.
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        for stmt in _SCHEMA_SQL.split(";"):
            stmt = stmt.strip()
            if stmt:
                conn.execute(stmt)
        conn.commit()

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def find_entity(
        self,
        owner_id: str,
        name: str,
        entity_type: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Exact-match lookup on (owner, name[, type]). Oldest row wins."""
        if entity_type:
            sql = """SELECT * FROM entities
                     WHERE owner_id = ? AND primary_name = ? AND type = ?
                     ORDER BY created_at ASC LIMIT 1"""
            params: tuple = (owner_id, name, entity_type)
        else:
            sql = """SELECT * FROM entities
                     WHERE owner_id = ? AND primary_name = ?
                     ORDER BY created_at ASC LIMIT 1"""
            params = (owner_id, name)
        with self._lock:
            row = self._get_conn().execute(sql, params).fetchone()
        return _entity_row(row) if row else None

    def create_entity(
        self,
        owner_id: str,
        name: str,
        entity_type: str,
        data: Optional[Dict[str, Any]] = None,
        entity_id: Optional[str] = None,
    ) -> str:
        """Insert a new entity. Returns its ID."""
        eid = entity_id or uuid.uuid4().hex[:16]
        now = time.time()
        with self._lock:
            conn = self._get_conn()
            try:
                conn.execute(
                    """INSERT INTO entities (id, owner_id, type, primary_name, data,
                                             created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (eid, owner_id, entity_type, name, json.dumps(data or {}), now, now),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceError(
                    f"Failed to create entity '{name}'",
                    context={"owner_id": owner_id, "type": entity_type, "cause": str(exc)},
                ) from exc
        logger.debug("Created entity %s (%s:%s)", eid, entity_type, name)
        return eid

    def find_or_create_entity(self, owner_id: str, name: str, entity_type: str) -> str:
        """Return the id of the matching entity, creating an empty one if absent."""
        with self._lock:
            existing = self.find_entity(owner_id, name, entity_type)
            if existing:
                return existing["id"]
            return self.create_entity(owner_id, name, entity_type)

    def get_entity(self, entity_id: str, owner_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Return entity dict (``data`` decoded) or None."""
        with self._lock:
            conn = self._get_conn()
            if owner_id:
                row = conn.execute(
                    "SELECT * FROM entities WHERE id = ? AND owner_id = ?", (entity_id, owner_id)
                ).fetchone()
            else:
                row = conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
        return _entity_row(row) if row else None

    def update_entity_data(self, entity_id: str, components: Dict[str, Any]) -> None:
        """Write components into an entity's data map.

        Each named component replaces the stored one wholesale; components
        not named here are left as they are.
        """
        with self._lock:
            conn = self._get_conn()
            try:
                row = conn.execute("SELECT data FROM entities WHERE id = ?", (entity_id,)).fetchone()
                if row is None:
                    raise PersistenceError(
                        f"Entity {entity_id} does not exist", context={"entity_id": entity_id}
                    )
                data = json.loads(row["data"] or "{}")
                data.update(components)
                conn.execute(
                    "UPDATE entities SET data = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(data), time.time(), entity_id),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceError(
                    f"Failed to update entity {entity_id}",
                    context={"entity_id": entity_id, "cause": str(exc)},
                ) from exc

    def delete_entity(self, entity_id: str, owner_id: Optional[str] = None) -> bool:
        """Delete an entity and (via cascade) every edge touching it."""
        with self._lock:
            conn = self._get_conn()
            try:
                if owner_id:
                    cur = conn.execute(
                        "DELETE FROM entities WHERE id = ? AND owner_id = ?", (entity_id, owner_id)
                    )
                else:
                    cur = conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceError(
                    f"Failed to delete entity {entity_id}", context={"cause": str(exc)}
                ) from exc
        return cur.rowcount > 0

    def list_entities_by_type(self, owner_id: str, entity_type: str, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._get_conn().execute(
                """SELECT * FROM entities WHERE owner_id = ? AND type = ?
                   ORDER BY updated_at DESC LIMIT ?""",
                (owner_id, entity_type, limit),
            ).fetchall()
        return [_entity_row(r) for r in rows]

    def list_recent_entities(self, owner_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Owner's entities of any type, most recently updated first."""
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT * FROM entities WHERE owner_id = ? ORDER BY updated_at DESC LIMIT ?",
                (owner_id, limit),
            ).fetchall()
        return [_entity_row(r) for r in rows]

    def search_entities(self, owner_id: str, text: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Substring search on entity names (LIKE). Not used for resolution."""
        with self._lock:
            rows = self._get_conn().execute(
                """SELECT * FROM entities
                   WHERE owner_id = ? AND lower(primary_name) LIKE ?
                   ORDER BY updated_at DESC LIMIT ?""",
                (owner_id, f"%{text.lower()}%", limit),
            ).fetchall()
        return [_entity_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def create_relationship(
        self,
        owner_id: str,
        source_id: str,
        target_id: str,
        rel_type: str,
        strength: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
        relationship_id: Optional[str] = None,
    ) -> bool:
        """Insert an edge.

        Returns False when either endpoint is missing. A duplicate
        ``(owner, source, target, type)`` counts as success.
        """
        strength = min(1.0, max(0.0, float(strength)))
        rid = relationship_id or uuid.uuid4().hex[:16]
        now = time.time()

        with self._lock:
            conn = self._get_conn()
            found = conn.execute(
                "SELECT COUNT(*) AS c FROM entities WHERE id IN (?, ?)",
                (source_id, target_id),
            ).fetchone()["c"]
            expected = 1 if source_id == target_id else 2
            if found < expected:
                logger.warning(
                    "Relationship %s skipped: missing endpoint (source=%s target=%s)",
                    rel_type, source_id, target_id,
                )
                return False

            try:
                conn.execute(
                    """INSERT INTO relationships (id, owner_id, source_entity_id, target_entity_id,
                                                  type, strength, metadata, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        rid, owner_id, source_id, target_id, rel_type, strength,
                        json.dumps(metadata) if metadata else None, now, now,
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                if "UNIQUE" in str(exc).upper():
                    logger.debug("Relationship %s %s->%s already exists", rel_type, source_id, target_id)
                    return True
                raise PersistenceError(
                    "Failed to create relationship",
                    context={"type": rel_type, "cause": str(exc)},
                ) from exc
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceError(
                    "Failed to create relationship",
                    context={"type": rel_type, "cause": str(exc)},
                ) from exc
        return True

    def find_relationships(
        self,
        entity_id: str,
        direction: str = "both",
        rel_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Edges touching *entity_id*, with endpoint names and types joined in."""
        if direction not in DIRECTIONS:
            raise ValidationError(
                f"Invalid direction '{direction}'", context={"allowed": list(DIRECTIONS)}
            )

        clauses = []
        params: List[Any] = []
        if direction in ("outgoing", "both"):
            clauses.append("r.source_entity_id = ?")
            params.append(entity_id)
        if direction in ("incoming", "both"):
            clauses.append("r.target_entity_id = ?")
            params.append(entity_id)

        sql = f"""SELECT r.*,
                         s.primary_name AS source_name, s.type AS source_type,
                         t.primary_name AS target_name, t.type AS target_type
                  FROM relationships r
                  JOIN entities s ON s.id = r.source_entity_id
                  JOIN entities t ON t.id = r.target_entity_id
                  WHERE ({' OR '.join(clauses)})"""
        if rel_type:
            sql += " AND r.type = ?"
            params.append(rel_type)
        sql += " ORDER BY r.created_at ASC"

        with self._lock:
            rows = self._get_conn().execute(sql, params).fetchall()
        return [_relationship_row(r) for r in rows]

    def find_related_entities(self, entity_id: str, rel_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Entities at the other end of any edge touching *entity_id*."""
        related: List[Dict[str, Any]] = []
        seen: set[str] = set()
        for rel in self.find_relationships(entity_id, "both", rel_type):
            other = rel["target_entity_id"] if rel["source_entity_id"] == entity_id else rel["source_entity_id"]
            if other in seen:
                continue
            seen.add(other)
            entity = self.get_entity(other)
            if entity:
                entity["relationship_type"] = rel["type"]
                entity["relationship_strength"] = rel["strength"]
                related.append(entity)
        return related

    # ------------------------------------------------------------------
    # Bounded read-only queries
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] = (), limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Run one parameterized SELECT on a read-only connection.

        Results are capped at ``max_query_rows`` (or *limit* if smaller).
        """
        statement = sql.strip().rstrip(";")
        if not _READ_ONLY_SQL.match(statement) or ";" in statement:
            raise ValidationError("Only a single SELECT statement is allowed")

        cap = self.max_query_rows if limit is None else min(limit, self.max_query_rows)
        uri = Path(self.db_path).resolve().as_uri() + "?mode=ro"
        ro = sqlite3.connect(uri, uri=True)
        ro.row_factory = sqlite3.Row
        try:
            cur = ro.execute(statement, tuple(params))
            rows = cur.fetchmany(cap)
        except sqlite3.Error as exc:
            raise ValidationError("Query failed", context={"cause": str(exc)}) from exc
        finally:
            ro.close()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self, owner_id: Optional[str] = None) -> Dict[str, Any]:
        """Return entity/relationship counts, optionally for one owner."""
        where = " WHERE owner_id = ?" if owner_id else ""
        params: tuple = (owner_id,) if owner_id else ()
        with self._lock:
            conn = self._get_conn()
            entity_count = conn.execute(f"SELECT COUNT(*) AS c FROM entities{where}", params).fetchone()["c"]
            rel_count = conn.execute(f"SELECT COUNT(*) AS c FROM relationships{where}", params).fetchone()["c"]
            by_type = conn.execute(
                f"SELECT type, COUNT(*) AS c FROM entities{where} GROUP BY type", params
            ).fetchall()
            rel_by_type = conn.execute(
                f"SELECT type, COUNT(*) AS c FROM relationships{where} GROUP BY type", params
            ).fetchall()
        return {
            "entities": entity_count,
            "relationships": rel_count,
            "entities_by_type": {r["type"]: r["c"] for r in by_type},
            "relationships_by_type": {r["type"]: r["c"] for r in rel_by_type},
        }
