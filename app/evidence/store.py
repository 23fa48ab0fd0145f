from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Literal

from pydantic import ValidationError

from app.evidence.adzuna import AdzunaJob
from app.schemas.requirements import AggregatedRequirement, RequirementEvidence

logger = logging.getLogger(__name__)

QueryStatus = Literal["idle", "fetching", "success", "error"]

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS job_queries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        role TEXT NOT NULL,
        location TEXT NOT NULL,
        country TEXT NOT NULL,
        fetch_status TEXT NOT NULL DEFAULT 'idle',
        last_fetched_at TEXT,
        error TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (role, location, country)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS job_postings (
        provider TEXT NOT NULL,
        provider_job_id TEXT NOT NULL,
        query_id INTEGER NOT NULL,
        title TEXT,
        company TEXT,
        location TEXT,
        description TEXT,
        category TEXT,
        salary_min REAL,
        salary_max REAL,
        contract_type TEXT,
        posted_at TEXT,
        source_url TEXT,
        raw_json TEXT,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (provider, provider_job_id)
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_job_postings_query
    ON job_postings (query_id);
    """,
    """
    CREATE TABLE IF NOT EXISTS job_requirements (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        query_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        label TEXT NOT NULL,
        normalized_key TEXT NOT NULL,
        evidence TEXT NOT NULL,
        frequency INTEGER NOT NULL,
        UNIQUE (query_id, type, normalized_key)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS requirement_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        query_id INTEGER NOT NULL,
        started_at TEXT NOT NULL,
        finished_at TEXT NOT NULL,
        postings_count INTEGER NOT NULL,
        requirements_count INTEGER NOT NULL,
        model TEXT NOT NULL,
        status TEXT NOT NULL,
        error TEXT
    );
    """,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class JobQueryRecord:
    id: int
    role: str
    location: str
    country: str
    fetch_status: QueryStatus
    last_fetched_at: datetime | None
    error: str | None


@dataclass(slots=True)
class PostingRecord:
    provider: str
    provider_job_id: str
    description: str | None

    @property
    def posting_id(self) -> str:
        return f"{self.provider}:{self.provider_job_id}"


@dataclass(slots=True)
class RunRecord:
    query_id: int
    started_at: datetime
    finished_at: datetime
    postings_count: int
    requirements_count: int
    model: str
    status: str
    error: str | None = None


def _evidence_from_json(raw: str | None) -> list[RequirementEvidence]:
    try:
        items = json.loads(raw or "[]")
    except json.JSONDecodeError:
        return []
    if not isinstance(items, list):
        return []
    output: list[RequirementEvidence] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            output.append(
                RequirementEvidence(
                    source=item.get("source"),
                    quote=str(item.get("quote") or "").strip(),
                    posting_id=item.get("postingId") if isinstance(item.get("postingId"), str) else None,
                    confidence=item.get("confidence", 0.5),
                )
            )
        except ValidationError:
            continue
    return output


class RequirementsStore:
    """SQLite persistence for evidence queries, raw postings, requirement rows and run records."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn

        directory = os.path.dirname(self.db_path)
        if directory and self.db_path != ":memory:":
            os.makedirs(directory, exist_ok=True)

        conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=5,
            isolation_level=None,
        )
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        for statement in _SCHEMA:
            conn.execute(statement)
        self._conn = conn
        return conn

    def init_db(self) -> None:
        with self._lock:
            self._connection()
        logger.info("requirements_store_ready path=%s", self.db_path)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _row_to_query(self, row: tuple[Any, ...]) -> JobQueryRecord:
        return JobQueryRecord(
            id=int(row[0]),
            role=row[1],
            location=row[2],
            country=row[3],
            fetch_status=row[4],
            last_fetched_at=parse_timestamp(row[5]),
            error=row[6],
        )

    def find_or_create_query(self, role: str, location: str, country: str) -> JobQueryRecord:
        select = (
            "SELECT id, role, location, country, fetch_status, last_fetched_at, error "
            "FROM job_queries WHERE role = ? AND location = ? AND country = ?"
        )
        with self._lock:
            conn = self._connection()
            conn.execute(
                """
                INSERT OR IGNORE INTO job_queries (role, location, country, fetch_status, created_at)
                VALUES (?, ?, ?, 'idle', ?)
                """,
                (role, location, country, _iso(_utc_now())),
            )
            row = conn.execute(select, (role, location, country)).fetchone()
        return self._row_to_query(row)

    def get_query(self, query_id: int) -> JobQueryRecord | None:
        with self._lock:
            row = self._connection().execute(
                """
                SELECT id, role, location, country, fetch_status, last_fetched_at, error
                FROM job_queries WHERE id = ?
                """,
                (query_id,),
            ).fetchone()
        return self._row_to_query(row) if row else None

    def mark_fetching(self, query_id: int) -> None:
        with self._lock:
            self._connection().execute(
                "UPDATE job_queries SET fetch_status = 'fetching', error = NULL WHERE id = ?",
                (query_id,),
            )

    def mark_success(self, query_id: int, fetched_at: datetime) -> None:
        with self._lock:
            self._connection().execute(
                "UPDATE job_queries SET fetch_status = 'success', last_fetched_at = ?, error = NULL WHERE id = ?",
                (_iso(fetched_at), query_id),
            )

    def mark_error(self, query_id: int, message: str) -> None:
        with self._lock:
            self._connection().execute(
                "UPDATE job_queries SET fetch_status = 'error', error = ? WHERE id = ?",
                (message[:1000], query_id),
            )

    def mark_idle(self, query_id: int) -> None:
        with self._lock:
            self._connection().execute(
                "UPDATE job_queries SET fetch_status = 'idle' WHERE id = ?",
                (query_id,),
            )

    def upsert_postings(self, query_id: int, jobs: Iterable[AdzunaJob]) -> int:
        now_iso = _iso(_utc_now())
        rows = [
            (
                job.provider,
                job.provider_job_id,
                query_id,
                job.title,
                job.company,
                job.location,
                job.description,
                job.category,
                job.salary_min,
                job.salary_max,
                job.contract_type,
                job.posted_at,
                job.source_url,
                json.dumps(job.raw, ensure_ascii=False, default=str),
                now_iso,
            )
            for job in jobs
        ]
        if not rows:
            return 0
        with self._lock:
            conn = self._connection()
            conn.execute("BEGIN")
            try:
                conn.executemany(
                    """
                    INSERT INTO job_postings (
                        provider, provider_job_id, query_id, title, company, location, description,
                        category, salary_min, salary_max, contract_type, posted_at, source_url,
                        raw_json, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (provider, provider_job_id) DO UPDATE SET
                        query_id = excluded.query_id,
                        title = excluded.title,
                        company = excluded.company,
                        location = excluded.location,
                        description = excluded.description,
                        category = excluded.category,
                        salary_min = excluded.salary_min,
                        salary_max = excluded.salary_max,
                        contract_type = excluded.contract_type,
                        posted_at = excluded.posted_at,
                        source_url = excluded.source_url,
                        raw_json = excluded.raw_json,
                        updated_at = excluded.updated_at
                    """,
                    rows,
                )
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        return len(rows)

    def get_postings(self, query_id: int) -> list[PostingRecord]:
        with self._lock:
            rows = self._connection().execute(
                """
                SELECT provider, provider_job_id, description
                FROM job_postings WHERE query_id = ?
                ORDER BY provider, provider_job_id
                """,
                (query_id,),
            ).fetchall()
        return [PostingRecord(provider=row[0], provider_job_id=row[1], description=row[2]) for row in rows]

    def get_requirements(self, query_id: int) -> list[AggregatedRequirement]:
        with self._lock:
            rows = self._connection().execute(
                """
                SELECT type, label, normalized_key, evidence, frequency
                FROM job_requirements WHERE query_id = ?
                ORDER BY frequency DESC, id
                """,
                (query_id,),
            ).fetchall()

        output: list[AggregatedRequirement] = []
        for row in rows:
            evidence = _evidence_from_json(row[3])
            if not evidence:
                continue
            try:
                output.append(
                    AggregatedRequirement(
                        type=row[0],
                        label=row[1],
                        normalized_key=row[2],
                        frequency=max(1, int(row[4] or 1)),
                        evidence=evidence[:8],
                    )
                )
            except ValidationError as exc:
                logger.warning("requirements_store_row_skipped query_id=%s key=%s: %s", query_id, row[2], exc)
        return output

    def replace_requirements(self, query_id: int, requirements: Iterable[AggregatedRequirement]) -> int:
        rows = []
        for requirement in requirements:
            payload = requirement.to_row()
            rows.append(
                (
                    query_id,
                    payload["type"],
                    payload["label"],
                    payload["normalized_key"],
                    json.dumps(payload["evidence"], ensure_ascii=False),
                    payload["frequency"],
                )
            )
        with self._lock:
            conn = self._connection()
            conn.execute("BEGIN")
            try:
                conn.execute("DELETE FROM job_requirements WHERE query_id = ?", (query_id,))
                conn.executemany(
                    """
                    INSERT INTO job_requirements (query_id, type, label, normalized_key, evidence, frequency)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        return len(rows)

    def write_run(self, record: RunRecord) -> None:
        with self._lock:
            self._connection().execute(
                """
                INSERT INTO requirement_runs (
                    query_id, started_at, finished_at, postings_count, requirements_count, model, status, error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.query_id,
                    _iso(record.started_at),
                    _iso(record.finished_at),
                    record.postings_count,
                    record.requirements_count,
                    record.model,
                    record.status,
                    record.error,
                ),
            )

    def list_runs(self, query_id: int) -> list[RunRecord]:
        with self._lock:
            rows = self._connection().execute(
                """
                SELECT query_id, started_at, finished_at, postings_count, requirements_count, model, status, error
                FROM requirement_runs WHERE query_id = ? ORDER BY id
                """,
                (query_id,),
            ).fetchall()
        return [
            RunRecord(
                query_id=int(row[0]),
                started_at=parse_timestamp(row[1]) or _utc_now(),
                finished_at=parse_timestamp(row[2]) or _utc_now(),
                postings_count=int(row[3]),
                requirements_count=int(row[4]),
                model=row[5],
                status=row[6],
                error=row[7],
            )
            for row in rows
        ]
