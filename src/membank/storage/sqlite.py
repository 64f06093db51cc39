"""Persistent summary storage using SQLite.

One row per summary, keyed by (project_name, id). Level and parent id are
real columns so level listings and child lookups are index scans; the rest
of the metadata rides along as JSON.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from membank.hierarchy.models import Summary, SummaryLevel, SummaryMetadata
from membank.storage.base import SummaryRepository


class SQLiteSummaryRepository(SummaryRepository):
    """Persists summaries in a single SQLite table."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        return self._conn

    def _create_tables(self) -> None:
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS summaries (
                project_name TEXT NOT NULL,
                id TEXT NOT NULL,
                level TEXT NOT NULL,             -- 'node', 'section', 'project'
                parent_id TEXT,                  -- weak reference, may be NULL
                content TEXT NOT NULL,
                metadata TEXT NOT NULL,          -- SummaryMetadata as JSON
                embedding TEXT,                  -- JSON list of floats
                PRIMARY KEY (project_name, id)
            );

            CREATE INDEX IF NOT EXISTS idx_summaries_level ON summaries(project_name, level);
            CREATE INDEX IF NOT EXISTS idx_summaries_parent ON summaries(project_name, parent_id);
        """)
        conn.commit()

    @staticmethod
    def _row_to_summary(row: sqlite3.Row) -> Summary:
        embedding = json.loads(row["embedding"]) if row["embedding"] else None
        return Summary(
            id=row["id"],
            project_name=row["project_name"],
            content=row["content"],
            metadata=SummaryMetadata.model_validate_json(row["metadata"]),
            embedding=embedding,
        )

    @staticmethod
    def _write_rows(conn: sqlite3.Connection, summaries: list[Summary]) -> None:
        conn.executemany(
            """INSERT OR REPLACE INTO summaries
            (project_name, id, level, parent_id, content, metadata, embedding)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    s.project_name,
                    s.id,
                    s.metadata.level.value,
                    s.metadata.parent_summary_id,
                    s.content,
                    s.metadata.model_dump_json(),
                    json.dumps(s.embedding) if s.embedding is not None else None,
                )
                for s in summaries
            ],
        )

    @staticmethod
    def _delete_rows(conn: sqlite3.Connection, project_name: str, summary_ids: list[str]) -> None:
        conn.executemany(
            "DELETE FROM summaries WHERE project_name = ? AND id = ?",
            [(project_name, sid) for sid in summary_ids],
        )

    async def put(self, summary: Summary) -> None:
        conn = self._get_conn()
        with conn:
            self._write_rows(conn, [summary])

    async def put_many(self, summaries: list[Summary]) -> None:
        conn = self._get_conn()
        with conn:
            self._write_rows(conn, summaries)

    async def replace_tree(
        self, project_name: str, summaries: list[Summary], delete_ids: list[str]
    ) -> None:
        conn = self._get_conn()
        with conn:
            self._write_rows(conn, summaries)
            self._delete_rows(conn, project_name, delete_ids)

    async def get(self, project_name: str, summary_id: str) -> Summary | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM summaries WHERE project_name = ? AND id = ?",
            (project_name, summary_id),
        ).fetchone()
        return self._row_to_summary(row) if row else None

    async def delete(self, project_name: str, summary_id: str) -> None:
        conn = self._get_conn()
        with conn:
            self._delete_rows(conn, project_name, [summary_id])

    async def list_level(self, project_name: str, level: SummaryLevel) -> list[Summary]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM summaries WHERE project_name = ? AND level = ? ORDER BY id",
            (project_name, level.value),
        ).fetchall()
        return [self._row_to_summary(r) for r in rows]

    async def list_children(self, project_name: str, parent_id: str) -> list[Summary]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM summaries WHERE project_name = ? AND parent_id = ? ORDER BY id",
            (project_name, parent_id),
        ).fetchall()
        return [self._row_to_summary(r) for r in rows]

    async def delete_project(self, project_name: str) -> int:
        conn = self._get_conn()
        cursor = conn.execute(
            "DELETE FROM summaries WHERE project_name = ?", (project_name,)
        )
        conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
