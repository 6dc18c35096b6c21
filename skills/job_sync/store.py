"""SQLite-backed store for job entities, ingested emails and resume cursors."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from skills.job_sync.types import EmailRecord, JobRecord

JOB_COLUMNS = (
    "company",
    "role",
    "job_type",
    "work_mode",
    "source_platform",
    "status",
    "first_email_date",
    "last_update_date",
    "interview_date",
    "notes",
)
_DATE_COLUMNS = {"first_email_date", "last_update_date", "interview_date"}


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)
    except ValueError:
        return None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _job_from_row(row: sqlite3.Row) -> JobRecord:
    return JobRecord(
        id=int(row["id"]),
        company=row["company"],
        role=row["role"],
        status=row["status"],
        job_type=row["job_type"],
        work_mode=row["work_mode"],
        source_platform=row["source_platform"] or "",
        first_email_date=_parse_iso(row["first_email_date"]),
        last_update_date=_parse_iso(row["last_update_date"]),
        interview_date=_parse_iso(row["interview_date"]),
        notes=row["notes"] or "",
    )


def _email_from_row(row: sqlite3.Row) -> EmailRecord:
    return EmailRecord(
        gmail_id=row["gmail_id"],
        job_id=row["job_id"],
        subject=row["subject"],
        sender=row["sender"],
        snippet=row["snippet"],
        email_date=_parse_iso(row["email_date"]) or _utc_now(),
        category=row["category"],
        confidence=float(row["confidence"]),
        raw_classification=row["raw_classification"] or "",
    )


class JobStore:
    """Two logical tables (jobs, emails) plus per-mode pagination cursors.

    Every public write runs in its own transaction unless it is made inside
    ``transaction()``, in which case it joins that one and commits with it.
    """

    def __init__(self, db_path: str | Path) -> None:
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = str(path)
        self._local = threading.local()
        self.ensure_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        shared = getattr(self._local, "conn", None)
        if shared is not None:
            yield shared
            return
        conn = self._open()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed store calls as one commit, rolled back on any error.

        Scoped to the calling thread; a nested call joins the outer transaction.
        """
        if getattr(self._local, "conn", None) is not None:
            yield
            return
        conn = self._open()
        self._local.conn = conn
        try:
            with conn:
                yield
        finally:
            self._local.conn = None
            conn.close()

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    company TEXT NOT NULL,
                    role TEXT NOT NULL,
                    job_type TEXT NOT NULL DEFAULT 'UNKNOWN',
                    work_mode TEXT NOT NULL DEFAULT 'UNKNOWN',
                    source_platform TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL,
                    first_email_date TEXT,
                    last_update_date TEXT,
                    interview_date TEXT,
                    notes TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

                CREATE TABLE IF NOT EXISTS emails (
                    gmail_id TEXT PRIMARY KEY,
                    job_id INTEGER REFERENCES jobs(id),
                    subject TEXT NOT NULL DEFAULT '',
                    sender TEXT NOT NULL DEFAULT '',
                    snippet TEXT NOT NULL DEFAULT '',
                    email_date TEXT NOT NULL,
                    category TEXT NOT NULL,
                    confidence REAL NOT NULL DEFAULT 0,
                    raw_classification TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_emails_job ON emails(job_id);

                CREATE TABLE IF NOT EXISTS sync_state (
                    mode TEXT PRIMARY KEY,
                    last_page_token TEXT,
                    query TEXT NOT NULL DEFAULT '',
                    emails_processed INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                );
                """
            )

    # Emails

    def has_email(self, gmail_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM emails WHERE gmail_id = ?;", (gmail_id,)).fetchone()
        return row is not None

    def existing_email_ids(self, gmail_ids: list[str]) -> set[str]:
        if not gmail_ids:
            return set()
        placeholders = ",".join("?" for _ in gmail_ids)
        with self._connect() as conn:
            rows = conn.execute(f"SELECT gmail_id FROM emails WHERE gmail_id IN ({placeholders});", gmail_ids).fetchall()
        return {row["gmail_id"] for row in rows}

    def insert_email(self, record: EmailRecord) -> bool:
        """Insert once per gmail id; returns False when the id was already stored."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO emails (
                    gmail_id, job_id, subject, sender, snippet, email_date,
                    category, confidence, raw_classification, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    record.gmail_id,
                    record.job_id,
                    record.subject,
                    record.sender,
                    record.snippet,
                    _iso(record.email_date),
                    record.category,
                    record.confidence,
                    record.raw_classification,
                    _iso(_utc_now()),
                ),
            )
            return cur.rowcount == 1

    def get_email(self, gmail_id: str) -> EmailRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM emails WHERE gmail_id = ?;", (gmail_id,)).fetchone()
        return _email_from_row(row) if row else None

    def list_emails(self, *, job_id: int | None = None, categories: list[str] | None = None) -> list[EmailRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if job_id is not None:
            clauses.append("job_id = ?")
            params.append(job_id)
        if categories:
            clauses.append(f"category IN ({','.join('?' for _ in categories)})")
            params.extend(categories)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(f"SELECT * FROM emails {where} ORDER BY email_date ASC, gmail_id ASC;", params).fetchall()
        return [_email_from_row(row) for row in rows]

    def set_email_category(self, gmail_id: str, category: str, confidence: float | None = None) -> bool:
        with self._connect() as conn:
            if confidence is None:
                cur = conn.execute("UPDATE emails SET category = ? WHERE gmail_id = ?;", (category, gmail_id))
            else:
                cur = conn.execute(
                    "UPDATE emails SET category = ?, confidence = ? WHERE gmail_id = ?;",
                    (category, confidence, gmail_id),
                )
            return cur.rowcount == 1

    def reassign_emails(self, from_job_ids: list[int], to_job_id: int) -> int:
        if not from_job_ids:
            return 0
        placeholders = ",".join("?" for _ in from_job_ids)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE emails SET job_id = ? WHERE job_id IN ({placeholders});",
                [to_job_id, *from_job_ids],
            )
            return cur.rowcount

    def latest_email_date(self) -> datetime | None:
        with self._connect() as conn:
            row = conn.execute("SELECT MAX(email_date) AS d FROM emails;").fetchone()
        return _parse_iso(row["d"]) if row else None

    # Jobs

    def create_job(
        self,
        *,
        company: str,
        role: str,
        status: str,
        job_type: str = "UNKNOWN",
        work_mode: str = "UNKNOWN",
        source_platform: str = "",
        first_email_date: datetime | None = None,
        last_update_date: datetime | None = None,
        interview_date: datetime | None = None,
        notes: str = "",
    ) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO jobs (
                    company, role, job_type, work_mode, source_platform, status,
                    first_email_date, last_update_date, interview_date, notes, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    company,
                    role,
                    job_type,
                    work_mode,
                    source_platform,
                    status,
                    _iso(first_email_date),
                    _iso(last_update_date),
                    _iso(interview_date),
                    notes,
                    _iso(_utc_now()),
                ),
            )
            return int(cur.lastrowid)

    def get_job(self, job_id: int) -> JobRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?;", (job_id,)).fetchone()
        return _job_from_row(row) if row else None

    def update_job(self, job_id: int, fields: dict[str, Any]) -> bool:
        if not fields:
            return False
        unknown = set(fields) - set(JOB_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown job column(s): {sorted(unknown)}")
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [_iso(v) if name in _DATE_COLUMNS else v for name, v in fields.items()]
        with self._connect() as conn:
            cur = conn.execute(f"UPDATE jobs SET {assignments} WHERE id = ?;", [*values, job_id])
            return cur.rowcount == 1

    def find_job_exact(self, company: str, role: str) -> int | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id FROM jobs WHERE LOWER(company) = LOWER(?) AND LOWER(role) = LOWER(?) ORDER BY id LIMIT 1;",
                (company, role),
            ).fetchone()
        return int(row["id"]) if row else None

    def job_names(self) -> list[tuple[int, str, str]]:
        """(id, company, role) for every job, oldest first."""
        with self._connect() as conn:
            rows = conn.execute("SELECT id, company, role FROM jobs ORDER BY id;").fetchall()
        return [(int(row["id"]), row["company"], row["role"]) for row in rows]

    def list_jobs(
        self,
        *,
        status: str | None = None,
        statuses: list[str] | None = None,
        company: str | None = None,
        job_type: str | None = None,
        work_mode: str | None = None,
        source_platform: str | None = None,
    ) -> list[JobRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if statuses:
            clauses.append(f"status IN ({','.join('?' for _ in statuses)})")
            params.extend(statuses)
        if company:
            clauses.append("LOWER(company) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(company.lower())}%")
        if job_type:
            clauses.append("job_type = ?")
            params.append(job_type)
        if work_mode:
            clauses.append("work_mode = ?")
            params.append(work_mode)
        if source_platform:
            clauses.append("source_platform = ?")
            params.append(source_platform)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(f"SELECT * FROM jobs {where} ORDER BY id;", params).fetchall()
        return [_job_from_row(row) for row in rows]

    def delete_jobs(self, job_ids: list[int]) -> int:
        if not job_ids:
            return 0
        placeholders = ",".join("?" for _ in job_ids)
        with self._connect() as conn:
            cur = conn.execute(f"DELETE FROM jobs WHERE id IN ({placeholders});", job_ids)
            return cur.rowcount

    def orphan_job_ids(self) -> list[int]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT j.id FROM jobs j
                LEFT JOIN emails e ON e.job_id = j.id
                WHERE e.gmail_id IS NULL
                ORDER BY j.id;
                """
            ).fetchall()
        return [int(row["id"]) for row in rows]

    def last_activity_by_job(self, statuses: list[str]) -> list[tuple[int, datetime | None]]:
        """Latest email date per job, falling back to the job's first-seen date."""
        placeholders = ",".join("?" for _ in statuses)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT j.id AS id, COALESCE(MAX(e.email_date), j.first_email_date) AS last_activity
                FROM jobs j
                LEFT JOIN emails e ON e.job_id = j.id
                WHERE j.status IN ({placeholders})
                GROUP BY j.id
                ORDER BY j.id;
                """,
                statuses,
            ).fetchall()
        return [(int(row["id"]), _parse_iso(row["last_activity"])) for row in rows]

    def status_counts(self) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS c FROM jobs GROUP BY status ORDER BY status;").fetchall()
        return {row["status"]: int(row["c"]) for row in rows}

    # Resume cursors

    def load_sync_state(self, mode: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sync_state WHERE mode = ?;", (mode,)).fetchone()
        if not row:
            return None
        return {
            "mode": row["mode"],
            "last_page_token": row["last_page_token"],
            "query": row["query"] or "",
            "emails_processed": int(row["emails_processed"]),
            "updated_at": row["updated_at"],
        }

    def save_sync_state(self, mode: str, page_token: str | None, emails_processed: int, query: str = "") -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (mode, last_page_token, query, emails_processed, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(mode) DO UPDATE SET
                    last_page_token = excluded.last_page_token,
                    query = excluded.query,
                    emails_processed = excluded.emails_processed,
                    updated_at = excluded.updated_at;
                """,
                (mode, page_token, query, emails_processed, _iso(_utc_now())),
            )

    def clear_sync_state(self, mode: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM sync_state WHERE mode = ?;", (mode,))
