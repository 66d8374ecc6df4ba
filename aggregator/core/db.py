"""SQLite layer: structured store, durable cache tier, quotas and the run log."""

import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Any

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    url          TEXT    NOT NULL UNIQUE,
    title        TEXT    NOT NULL,
    company      TEXT    NOT NULL DEFAULT '',
    location     TEXT    NOT NULL DEFAULT '',
    description  TEXT    NOT NULL DEFAULT '',
    salary       TEXT,
    posted_at    TEXT,
    work_type    TEXT    NOT NULL DEFAULT '',
    source       TEXT    NOT NULL DEFAULT '',
    ingested_at  TEXT    NOT NULL
);
"""

_JOBS_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_jobs_location ON jobs (location COLLATE NOCASE)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_title ON jobs (title COLLATE NOCASE)",
)

_CONTACTS_TABLE = """
CREATE TABLE IF NOT EXISTS contacts (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    company          TEXT    NOT NULL,
    name             TEXT    NOT NULL,
    title            TEXT    NOT NULL DEFAULT '',
    email            TEXT,
    phone            TEXT,
    linkedin_url     TEXT,
    department       TEXT,
    company_website  TEXT,
    industry         TEXT,
    employee_count   INTEGER,
    rating           REAL,
    ingested_at      TEXT    NOT NULL,
    UNIQUE(company, name)
);
"""

_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS cache_entries (
    fingerprint  TEXT PRIMARY KEY,
    payload      TEXT NOT NULL,
    cached_at    TEXT NOT NULL,
    expires_at   TEXT NOT NULL
);
"""

_QUOTA_TABLE = """
CREATE TABLE IF NOT EXISTS quota (
    source         TEXT NOT NULL,
    date           TEXT NOT NULL,
    requests_made  INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (source, date)
);
"""

_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS aggregation_runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    fingerprint     TEXT    NOT NULL,
    query_class     TEXT    NOT NULL,
    source          TEXT    NOT NULL,
    record_count    INTEGER NOT NULL,
    rejected_count  INTEGER NOT NULL,
    started_at      TEXT    NOT NULL,
    finished_at     TEXT    NOT NULL
);
"""


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    for ddl in (_JOBS_TABLE, _CONTACTS_TABLE, _CACHE_TABLE, _QUOTA_TABLE, _RUNS_TABLE):
        conn.execute(ddl)
    for ddl in _JOBS_INDEXES:
        conn.execute(ddl)
    conn.commit()
    return conn


# --- Structured store ---


def upsert_job(conn: sqlite3.Connection, job: dict[str, Any]) -> None:
    """Insert or replace a job keyed by URL."""
    conn.execute(
        """
        INSERT INTO jobs
            (url, title, company, location, description, salary, posted_at,
             work_type, source, ingested_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(url) DO UPDATE SET
            title = excluded.title,
            company = excluded.company,
            location = excluded.location,
            description = excluded.description,
            salary = excluded.salary,
            posted_at = excluded.posted_at,
            work_type = excluded.work_type,
            source = excluded.source,
            ingested_at = excluded.ingested_at
        """,
        (
            job["url"],
            job["title"],
            job.get("company", ""),
            job.get("location", ""),
            job.get("description", ""),
            job.get("salary"),
            job.get("posted_at"),
            (job.get("work_type") or "").lower(),
            job.get("source", ""),
            datetime.now().isoformat(),
        ),
    )
    conn.commit()


def upsert_contact(conn: sqlite3.Connection, contact: dict[str, Any]) -> None:
    """Insert or replace a contact keyed by (company, name)."""
    conn.execute(
        """
        INSERT INTO contacts
            (company, name, title, email, phone, linkedin_url, department,
             company_website, industry, employee_count, rating, ingested_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(company, name) DO UPDATE SET
            title = excluded.title,
            email = excluded.email,
            phone = excluded.phone,
            linkedin_url = excluded.linkedin_url,
            department = excluded.department,
            company_website = excluded.company_website,
            industry = excluded.industry,
            employee_count = excluded.employee_count,
            rating = excluded.rating,
            ingested_at = excluded.ingested_at
        """,
        (
            contact["company"],
            contact["name"],
            contact.get("title", ""),
            contact.get("email"),
            contact.get("phone"),
            contact.get("linkedin_url"),
            contact.get("department"),
            contact.get("company_website"),
            contact.get("industry"),
            contact.get("employee_count"),
            contact.get("rating"),
            datetime.now().isoformat(),
        ),
    )
    conn.commit()


def _like_pattern(term: str) -> str:
    """Substring pattern for ``LIKE ... ESCAPE '\\'``; wildcards in ``term`` match literally."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def query_jobs(
    conn: sqlite3.Connection,
    keywords: list[str],
    location: str | None = None,
    work_type: str | None = None,
    limit: int = 100,
) -> list[sqlite3.Row]:
    """Return jobs matching ANY keyword (title or description) and the location.

    Location matches on its first comma-separated segment (the city), so
    "Toronto, ON" finds rows stored as "Toronto, Ontario". Remote searches
    ignore location.
    """
    clauses: list[str] = []
    params: list[Any] = []

    keyword_clauses = []
    for kw in keywords:
        keyword_clauses.append(r"(title LIKE ? ESCAPE '\' OR description LIKE ? ESCAPE '\')")
        params.extend([_like_pattern(kw)] * 2)
    if keyword_clauses:
        clauses.append("(" + " OR ".join(keyword_clauses) + ")")

    remote = work_type == "remote"
    if work_type and work_type != "any":
        clauses.append("work_type = ?")
        params.append(work_type)

    city = (location or "").split(",")[0].strip()
    if city and not remote:
        clauses.append(r"location LIKE ? ESCAPE '\'")
        params.append(_like_pattern(city))

    where = " AND ".join(clauses) if clauses else "1=1"
    params.append(limit)
    return conn.execute(
        f"SELECT * FROM jobs WHERE {where} ORDER BY posted_at DESC, id DESC LIMIT ?",  # noqa: S608
        params,
    ).fetchall()


def query_contacts(
    conn: sqlite3.Connection,
    company: str,
    limit: int = 100,
) -> list[sqlite3.Row]:
    """Return contacts stored for a company (case-insensitive exact name)."""
    return conn.execute(
        "SELECT * FROM contacts WHERE company = ? COLLATE NOCASE ORDER BY id LIMIT ?",
        (company.strip(), limit),
    ).fetchall()


# --- Durable cache tier ---


def get_cache_row(conn: sqlite3.Connection, fingerprint: str) -> sqlite3.Row | None:
    return conn.execute(  # type: ignore[no-any-return]
        "SELECT * FROM cache_entries WHERE fingerprint = ?",
        (fingerprint,),
    ).fetchone()


def put_cache_row(
    conn: sqlite3.Connection,
    fingerprint: str,
    payload: str,
    cached_at: datetime,
    expires_at: datetime,
) -> None:
    """Full overwrite of the entry for a fingerprint (last write wins)."""
    conn.execute(
        """
        INSERT INTO cache_entries (fingerprint, payload, cached_at, expires_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(fingerprint) DO UPDATE SET
            payload = excluded.payload,
            cached_at = excluded.cached_at,
            expires_at = excluded.expires_at
        """,
        (fingerprint, payload, cached_at.isoformat(), expires_at.isoformat()),
    )
    conn.commit()


def delete_cache_row(conn: sqlite3.Connection, fingerprint: str) -> None:
    conn.execute("DELETE FROM cache_entries WHERE fingerprint = ?", (fingerprint,))
    conn.commit()


def sweep_cache_rows(conn: sqlite3.Connection, now: datetime) -> int:
    """Delete expired entries. Returns the number removed."""
    cursor = conn.execute(
        "DELETE FROM cache_entries WHERE expires_at <= ?",
        (now.isoformat(),),
    )
    conn.commit()
    return cursor.rowcount


# --- Quota ---


def get_quota(
    conn: sqlite3.Connection,
    source: str,
    target_date: date | None = None,
) -> int:
    """Return requests made today (or on the given date) for a source."""
    d = (target_date or date.today()).isoformat()
    row = conn.execute(
        "SELECT requests_made FROM quota WHERE source = ? AND date = ?",
        (source, d),
    ).fetchone()
    if row is None:
        return 0
    return int(row["requests_made"])


def update_quota(
    conn: sqlite3.Connection,
    source: str,
    requests_delta: int = 1,
    target_date: date | None = None,
) -> None:
    """Increment today's request counter (or given date). Creates row if needed."""
    d = (target_date or date.today()).isoformat()
    conn.execute(
        """
        INSERT INTO quota (source, date, requests_made)
        VALUES (?, ?, ?)
        ON CONFLICT(source, date)
        DO UPDATE SET requests_made = requests_made + excluded.requests_made
        """,
        (source, d, requests_delta),
    )
    conn.commit()


# --- Run log ---


def insert_aggregation_run(
    conn: sqlite3.Connection,
    fingerprint: str,
    query_class: str,
    source: str,
    record_count: int,
    rejected_count: int,
    started_at: datetime,
    finished_at: datetime,
) -> int:
    """Record a completed aggregation. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO aggregation_runs
            (fingerprint, query_class, source, record_count, rejected_count,
             started_at, finished_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            fingerprint,
            query_class,
            source,
            record_count,
            rejected_count,
            started_at.isoformat(),
            finished_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0
