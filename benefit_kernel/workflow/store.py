"""
Workflow Store — durable, versioned workflow records.

Behavioral Contract:
- One row per workflow, holding the full record JSON and its version
- Writes after creation are compare-and-swap on the version column: a write
  succeeds only if the stored version still equals the version the caller
  read, and it stores exactly that version + 1
- A lost race surfaces as ConflictError; nothing is retried here
"""

import sqlite3
import threading
from typing import List, Optional

from benefit_kernel.errors import ConflictError, NotFoundError, ValidationError
from benefit_kernel.models.workflow import Workflow


class WorkflowStore:
    """
    Workflow persistence.
    Prototype: SQLite. Production: PostgreSQL with the same CAS update.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the workflows table if it doesn't exist."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS workflows (
                    id TEXT PRIMARY KEY,
                    profile_id TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    record_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_workflows_profile_id ON workflows(profile_id)
            """)
            self._conn.commit()

    def insert(self, workflow: Workflow) -> Workflow:
        """Persist a newly created workflow."""
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO workflows (id, profile_id, version, record_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        workflow.id,
                        workflow.profile_id,
                        workflow.version,
                        workflow.model_dump_json(),
                        workflow.created_at.isoformat(),
                        workflow.updated_at.isoformat() if workflow.updated_at else None,
                    ),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                raise ValidationError(
                    f"Workflow {workflow.id} already exists",
                    detail={"workflow_id": workflow.id},
                ) from e
        return workflow

    def compare_and_swap(self, workflow: Workflow, expected_version: int) -> Workflow:
        """
        Store `workflow` as version expected_version + 1, if and only if the
        stored version is still `expected_version`.
        """
        updated = workflow.model_copy(update={"version": expected_version + 1})
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE workflows
                SET version = ?, record_json = ?, updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (
                    updated.version,
                    updated.model_dump_json(),
                    updated.updated_at.isoformat() if updated.updated_at else None,
                    updated.id,
                    expected_version,
                ),
            )
            self._conn.commit()
            if cursor.rowcount == 1:
                return updated
            row = self._conn.execute(
                "SELECT version FROM workflows WHERE id = ?", (workflow.id,)
            ).fetchone()

        if row is None:
            raise NotFoundError(
                f"Workflow {workflow.id} not found", detail={"workflow_id": workflow.id}
            )
        raise ConflictError(workflow.id, expected_version, row["version"])

    def _deserialize(self, row: sqlite3.Row) -> Workflow:
        return Workflow.model_validate_json(row["record_json"])

    def get(self, workflow_id: str) -> Optional[Workflow]:
        with self._lock:
            row = self._conn.execute(
                "SELECT record_json FROM workflows WHERE id = ?", (workflow_id,)
            ).fetchone()
        return self._deserialize(row) if row else None

    def require(self, workflow_id: str) -> Workflow:
        workflow = self.get(workflow_id)
        if workflow is None:
            raise NotFoundError(
                f"Workflow {workflow_id} not found", detail={"workflow_id": workflow_id}
            )
        return workflow

    def delete(self, workflow_id: str, expected_version: Optional[int] = None) -> bool:
        """Delete (abandon) a workflow, optionally guarded by its version."""
        with self._lock:
            if expected_version is None:
                cursor = self._conn.execute(
                    "DELETE FROM workflows WHERE id = ?", (workflow_id,)
                )
            else:
                cursor = self._conn.execute(
                    "DELETE FROM workflows WHERE id = ? AND version = ?",
                    (workflow_id, expected_version),
                )
            self._conn.commit()
            deleted = cursor.rowcount == 1
            if deleted or expected_version is None:
                return deleted
            row = self._conn.execute(
                "SELECT version FROM workflows WHERE id = ?", (workflow_id,)
            ).fetchone()
        if row is None:
            return False
        raise ConflictError(workflow_id, expected_version, row["version"])

    def list_by_profile(self, profile_id: str) -> List[Workflow]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM workflows WHERE profile_id = ? ORDER BY created_at, id",
                (profile_id,),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def list_all(self) -> List[Workflow]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM workflows ORDER BY created_at, id"
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS cnt FROM workflows").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
