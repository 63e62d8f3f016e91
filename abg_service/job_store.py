"""
Job Store

Key-value persistence for job status records, keyed by job id. Two backends:
an in-process dict (default, lost on restart) and SQLite, which keeps
records across restarts. Records are plain JSON-compatible dicts.
"""
import asyncio
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import StoreWriteError

logger = logging.getLogger(__name__)

ANALYSIS_STORE = "analysisJobs"
OCR_STORE = "ocrJobs"


class JobStore:
    """Async get/set-by-key interface shared by all backends."""

    name: str

    async def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def set(self, job_id: str, record: Dict[str, Any]) -> None:
        raise NotImplementedError


class InMemoryJobStore(JobStore):
    def __init__(self, name: str):
        self.name = name
        self._records: Dict[str, str] = {}

    async def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        raw = self._records.get(job_id)
        return json.loads(raw) if raw is not None else None

    async def set(self, job_id: str, record: Dict[str, Any]) -> None:
        # Stored serialised so callers never share a mutable dict with the store
        try:
            self._records[job_id] = json.dumps(record, default=str)
        except (TypeError, ValueError) as e:
            raise StoreWriteError(f"Failed to write job {job_id}: {e}")

    def __len__(self) -> int:
        return len(self._records)


class SqliteJobStore(JobStore):
    """SQLite-backed store; one table shared by every named store."""

    def __init__(self, name: str, db_path: Path):
        self.name = name
        self.db_path = Path(db_path)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _init_database(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    store       TEXT NOT NULL,
                    job_id      TEXT NOT NULL,
                    status      TEXT,
                    record      TEXT NOT NULL,
                    updated_at  TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (store, job_id)
                )
            """)
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Job store '{self.name}' initialized: {self.db_path}")

    def _get_sync(self, job_id: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT record FROM jobs WHERE store = ? AND job_id = ?",
                (self.name, job_id),
            ).fetchone()
        finally:
            conn.close()
        return json.loads(row[0]) if row else None

    def _set_sync(self, job_id: str, record: Dict[str, Any]) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO jobs (store, job_id, status, record, updated_at)
                VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (self.name, job_id, record.get("status"), json.dumps(record, default=str)),
            )
            conn.commit()
        finally:
            conn.close()

    async def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get_sync, job_id)

    async def set(self, job_id: str, record: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._set_sync, job_id, record)
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Failed to persist job {job_id} to {self.name}: {e}")
            raise StoreWriteError(f"Failed to write job {job_id}: {e}")


def create_job_stores(backend: str = "memory", db_path: Optional[str] = None) -> Dict[str, JobStore]:
    """Build the analysis and OCR stores for the configured backend."""
    if backend == "sqlite":
        path = Path(db_path or "data/jobs.db")
        return {
            ANALYSIS_STORE: SqliteJobStore(ANALYSIS_STORE, path),
            OCR_STORE: SqliteJobStore(OCR_STORE, path),
        }
    if backend != "memory":
        logger.warning(f"Unknown job store backend '{backend}', using memory")
    return {
        ANALYSIS_STORE: InMemoryJobStore(ANALYSIS_STORE),
        OCR_STORE: InMemoryJobStore(OCR_STORE),
    }
