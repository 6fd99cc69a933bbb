import logging
import sqlite3
from datetime import datetime
from typing import Literal

from backend.config import DB_PATH
from backend.models import AttendanceRecord, AttendanceStatus, Session, SessionStatus, as_utc

logger = logging.getLogger(__name__)

LedgerOutcome = Literal["created", "already_exists"]

# Seconds a writer waits on a locked database before giving up.
BUSY_TIMEOUT_SECONDS = 30.0


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), timeout=BUSY_TIMEOUT_SECONDS, check_same_thread=False)
    # recommended with FK tables
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    # Sessions are owned by the scheduling side; the core only reads them.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        start_time TEXT NOT NULL,            -- ISO 8601, UTC
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'closed')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT NOT NULL,
        session_id INTEGER NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('present', 'late')),
        marked_at TEXT NOT NULL,             -- ISO 8601, UTC
        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
        UNIQUE(student_id, session_id)
    )
    """)

    cursor.execute("""
    CREATE INDEX IF NOT EXISTS idx_attendance_records_student
    ON attendance_records(student_id)
    """)

    conn.commit()
    conn.close()


def _iso(value: datetime) -> str:
    return as_utc(value).isoformat(timespec="microseconds")


def _parse_iso(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value))


def _session_from_row(row) -> Session:
    status: SessionStatus = "active" if row[2] == "active" else "closed"
    return Session(id=int(row[0]), start_time=_parse_iso(str(row[1])), status=status)


def _record_from_row(row) -> AttendanceRecord:
    status: AttendanceStatus = "present" if row[2] == "present" else "late"
    return AttendanceRecord(
        student_id=str(row[0]),
        session_id=int(row[1]),
        status=status,
        marked_at=_parse_iso(str(row[3])),
    )


# -----------------------------
# Sessions
# -----------------------------
def add_session(start_time: datetime, status: SessionStatus = "active") -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO sessions (start_time, status)
        VALUES (?, ?)
    """, (_iso(start_time), status))
    session_id = int(cur.lastrowid)
    conn.commit()
    conn.close()
    return session_id


def get_session(session_id: int) -> Session | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, start_time, status
        FROM sessions
        WHERE id = ?
    """, (session_id,))
    row = cur.fetchone()
    conn.close()
    if not row:
        return None
    return _session_from_row(row)


def close_session(session_id: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        UPDATE sessions
        SET status = 'closed'
        WHERE id = ?
    """, (session_id,))
    changed = cur.rowcount > 0
    conn.commit()
    conn.close()
    return changed


# -----------------------------
# Attendance ledger
# -----------------------------
def create_attendance_if_absent(
    student_id: str,
    session_id: int,
    status: AttendanceStatus,
    marked_at: datetime,
) -> LedgerOutcome:
    """
    Record the attendance outcome for (student_id, session_id) unless one
    exists already.

    The UNIQUE(student_id, session_id) constraint makes this a single atomic
    check-and-set: of any number of concurrent callers for the same pair,
    exactly one INSERT succeeds and the rest get "already_exists".

    Any other constraint failure (unknown session, bad status) propagates.
    """
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO attendance_records (student_id, session_id, status, marked_at)
            VALUES (?, ?, ?, ?)
            """,
            (student_id, session_id, status, _iso(marked_at)),
        )
        conn.commit()
        return "created"
    except sqlite3.IntegrityError:
        conn.rollback()
        cur.execute(
            """
            SELECT 1
            FROM attendance_records
            WHERE student_id = ? AND session_id = ?
            LIMIT 1
            """,
            (student_id, session_id),
        )
        if not cur.fetchone():
            raise
        logger.debug("Attendance already recorded for %s in session %s", student_id, session_id)
        return "already_exists"
    finally:
        conn.close()


def get_attendance_record(student_id: str, session_id: int) -> AttendanceRecord | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT student_id, session_id, status, marked_at
        FROM attendance_records
        WHERE student_id = ? AND session_id = ?
        """,
        (student_id, session_id),
    )
    row = cur.fetchone()
    conn.close()
    if not row:
        return None
    return _record_from_row(row)


def get_attendance_records(
    *,
    student_id: str | None = None,
    session_id: int | None = None,
) -> list[AttendanceRecord]:
    where = ["1=1"]
    params: list = []
    if student_id is not None:
        where.append("student_id = ?")
        params.append(student_id)
    if session_id is not None:
        where.append("session_id = ?")
        params.append(session_id)
    where_sql = " AND ".join(where)

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT student_id, session_id, status, marked_at
        FROM attendance_records
        WHERE {where_sql}
        ORDER BY marked_at DESC, id DESC
        """,
        params,
    )
    rows = cur.fetchall()
    conn.close()
    return [_record_from_row(row) for row in rows]

