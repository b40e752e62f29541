"""Storage backends for students, settings, usage ledger and audit events."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Protocol
import sqlite3
import threading

from witnessbox.models import (
    AdminToken,
    ChatMessage,
    ChatSession,
    Settings,
    Student,
    UsageEntry,
    ViolationEvent,
)
from witnessbox.schemas import FilterMode, MessageRole, ViolationCategory, ViolationStatus


STUDENT_FIELDS = (
    "name", "is_active", "daily_token_limit", "monthly_cost_limit", "notes",
)


class DuplicateStudentError(Exception):
    """Raised when adding a student whose email is already whitelisted."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Student '{email}' already exists")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class RecordStore(Protocol):
    """Storage backend interface."""

    def create_student(self, student: Student) -> Student:
        ...

    def get_student(self, email: str) -> Optional[Student]:
        ...

    def list_students(self) -> List[Student]:
        ...

    def update_student(self, email: str, **updates) -> Optional[Student]:
        ...

    def delete_student(self, email: str) -> bool:
        ...

    def get_settings(self) -> Optional[Settings]:
        ...

    def update_settings(self, settings: Settings) -> Settings:
        ...

    def add_usage(self, entry: UsageEntry) -> UsageEntry:
        ...

    def list_usage(
        self, session_id: Optional[str] = None, student_email: Optional[str] = None
    ) -> List[UsageEntry]:
        ...

    def list_usage_since(
        self, cutoff: datetime, student_email: Optional[str] = None
    ) -> List[UsageEntry]:
        ...

    def create_violation(self, event: ViolationEvent) -> ViolationEvent:
        ...

    def get_violation(self, event_id: str) -> Optional[ViolationEvent]:
        ...

    def update_violation(self, event: ViolationEvent) -> ViolationEvent:
        ...

    def list_violations(
        self, student_email: Optional[str] = None, category: Optional[str] = None
    ) -> List[ViolationEvent]:
        ...

    def create_session(self, session: ChatSession) -> ChatSession:
        ...

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        ...

    def add_message(self, message: ChatMessage) -> ChatMessage:
        ...

    def list_messages(self, session_id: str) -> List[ChatMessage]:
        ...

    def create_admin_token(self, token: AdminToken) -> AdminToken:
        ...

    def get_admin_token(self, token: str) -> Optional[AdminToken]:
        ...

    def delete_admin_token(self, token: str) -> bool:
        ...

    def cleanup_expired_tokens(self) -> int:
        ...


def _check_student_updates(updates: dict) -> None:
    unknown = set(updates) - set(STUDENT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown student fields: {', '.join(sorted(unknown))}")


class InMemoryStorage:
    """In-memory storage backend (default for tests and local runs)."""

    def __init__(self):
        self._students: Dict[str, Student] = {}
        self._settings: Optional[Settings] = None
        self._usage: List[UsageEntry] = []
        self._violations: Dict[str, ViolationEvent] = {}
        self._sessions: Dict[str, ChatSession] = {}
        self._messages: List[ChatMessage] = []
        self._tokens: Dict[str, AdminToken] = {}
        self._lock = threading.Lock()

    # Students

    def create_student(self, student: Student) -> Student:
        student = replace(student, email=normalize_email(student.email))
        with self._lock:
            if student.email in self._students:
                raise DuplicateStudentError(student.email)
            self._students[student.email] = student
        return student

    def get_student(self, email: str) -> Optional[Student]:
        return self._students.get(normalize_email(email))

    def list_students(self) -> List[Student]:
        return sorted(self._students.values(), key=lambda s: s.created_at)

    def update_student(self, email: str, **updates) -> Optional[Student]:
        _check_student_updates(updates)
        key = normalize_email(email)
        with self._lock:
            student = self._students.get(key)
            if student is None:
                return None
            updated = replace(student, **updates)
            self._students[key] = updated
        return updated

    def delete_student(self, email: str) -> bool:
        with self._lock:
            return self._students.pop(normalize_email(email), None) is not None

    # Settings

    def get_settings(self) -> Optional[Settings]:
        return self._settings

    def update_settings(self, settings: Settings) -> Settings:
        settings = replace(settings, updated_at=datetime.now(timezone.utc))
        self._settings = settings
        return settings

    # Usage ledger

    def add_usage(self, entry: UsageEntry) -> UsageEntry:
        entry = replace(entry, student_email=normalize_email(entry.student_email))
        with self._lock:
            self._usage.append(entry)
        return entry

    def list_usage(
        self, session_id: Optional[str] = None, student_email: Optional[str] = None
    ) -> List[UsageEntry]:
        entries = self._usage
        if session_id:
            entries = [e for e in entries if e.session_id == session_id]
        if student_email:
            key = normalize_email(student_email)
            entries = [e for e in entries if e.student_email == key]
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    def list_usage_since(
        self, cutoff: datetime, student_email: Optional[str] = None
    ) -> List[UsageEntry]:
        key = normalize_email(student_email) if student_email else None
        return [
            e for e in self._usage
            if e.timestamp >= cutoff and (key is None or e.student_email == key)
        ]

    # Violations

    def create_violation(self, event: ViolationEvent) -> ViolationEvent:
        with self._lock:
            self._violations[event.event_id] = event
        return event

    def get_violation(self, event_id: str) -> Optional[ViolationEvent]:
        event = self._violations.get(event_id)
        return replace(event) if event else None

    def update_violation(self, event: ViolationEvent) -> ViolationEvent:
        with self._lock:
            if event.event_id not in self._violations:
                raise KeyError(event.event_id)
            self._violations[event.event_id] = replace(event)
        return event

    def list_violations(
        self, student_email: Optional[str] = None, category: Optional[str] = None
    ) -> List[ViolationEvent]:
        events = list(self._violations.values())
        if student_email:
            events = [e for e in events if e.student_email == normalize_email(student_email)]
        if category:
            events = [e for e in events if e.category == ViolationCategory(category)]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    # Sessions and messages

    def create_session(self, session: ChatSession) -> ChatSession:
        session = replace(session, student_email=normalize_email(session.student_email))
        self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def add_message(self, message: ChatMessage) -> ChatMessage:
        with self._lock:
            self._messages.append(message)
        return message

    def list_messages(self, session_id: str) -> List[ChatMessage]:
        return [m for m in self._messages if m.session_id == session_id]

    # Admin tokens

    def create_admin_token(self, token: AdminToken) -> AdminToken:
        self._tokens[token.token] = token
        return token

    def get_admin_token(self, token: str) -> Optional[AdminToken]:
        found = self._tokens.get(token)
        if found and found.expires_at >= datetime.now(timezone.utc):
            return found
        return None

    def delete_admin_token(self, token: str) -> bool:
        return self._tokens.pop(token, None) is not None

    def cleanup_expired_tokens(self) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [t for t, tok in self._tokens.items() if tok.expires_at <= now]
            for t in expired:
                del self._tokens[t]
        return len(expired)


def _ts(value: datetime) -> str:
    """UTC ISO-8601 with fixed precision so text order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _parse_dec(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


class SQLiteStorage:
    """SQLite-backed storage backend."""

    def __init__(self, db_path: str = "witnessbox.db"):
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS students (
                email TEXT PRIMARY KEY,
                name TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                daily_token_limit INTEGER,
                monthly_cost_limit TEXT,
                notes TEXT,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS settings (
                id TEXT PRIMARY KEY,
                global_daily_token_limit INTEGER,
                global_monthly_cost_limit TEXT,
                content_filter_mode TEXT NOT NULL DEFAULT 'normal',
                alert_email TEXT,
                updated_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS usage_entries (
                entry_id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                student_email TEXT NOT NULL,
                student_name TEXT,
                tokens_used INTEGER NOT NULL,
                cost TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS violation_events (
                event_id TEXT PRIMARY KEY,
                student_email TEXT NOT NULL,
                session_id TEXT,
                category TEXT NOT NULL,
                detail TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'flagged',
                content TEXT,
                filter_mode TEXT,
                bypassed_at TEXT,
                timestamp TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS chat_sessions (
                session_id TEXT PRIMARY KEY,
                student_email TEXT NOT NULL,
                student_name TEXT,
                character_name TEXT NOT NULL,
                situation TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS chat_messages (
                message_id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS admin_tokens (
                token TEXT PRIMARY KEY,
                expires_at TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_usage_student ON usage_entries(student_email);
            CREATE INDEX IF NOT EXISTS idx_usage_time ON usage_entries(timestamp);
            CREATE INDEX IF NOT EXISTS idx_violations_student ON violation_events(student_email);
            CREATE INDEX IF NOT EXISTS idx_messages_session ON chat_messages(session_id);
            """
        )
        self._conn.commit()

    def _write(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
        return cur

    # Students

    def _row_to_student(self, row: sqlite3.Row) -> Student:
        return Student(
            email=row["email"],
            name=row["name"],
            is_active=bool(row["is_active"]),
            daily_token_limit=row["daily_token_limit"],
            monthly_cost_limit=_parse_dec(row["monthly_cost_limit"]),
            notes=row["notes"],
            created_at=_parse_ts(row["created_at"]),
        )

    def create_student(self, student: Student) -> Student:
        student = replace(student, email=normalize_email(student.email))
        try:
            self._write(
                """
                INSERT INTO students
                    (email, name, is_active, daily_token_limit, monthly_cost_limit, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    student.email,
                    student.name,
                    1 if student.is_active else 0,
                    student.daily_token_limit,
                    _dec(student.monthly_cost_limit),
                    student.notes,
                    _ts(student.created_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateStudentError(student.email) from exc
        return student

    def get_student(self, email: str) -> Optional[Student]:
        row = self._conn.execute(
            "SELECT * FROM students WHERE email = ?",
            (normalize_email(email),),
        ).fetchone()
        return self._row_to_student(row) if row else None

    def list_students(self) -> List[Student]:
        rows = self._conn.execute("SELECT * FROM students ORDER BY created_at ASC").fetchall()
        return [self._row_to_student(row) for row in rows]

    def update_student(self, email: str, **updates) -> Optional[Student]:
        _check_student_updates(updates)
        student = self.get_student(email)
        if student is None:
            return None
        updated = replace(student, **updates)
        self._write(
            """
            UPDATE students SET
                name = ?, is_active = ?, daily_token_limit = ?,
                monthly_cost_limit = ?, notes = ?
            WHERE email = ?
            """,
            (
                updated.name,
                1 if updated.is_active else 0,
                updated.daily_token_limit,
                _dec(updated.monthly_cost_limit),
                updated.notes,
                updated.email,
            ),
        )
        return updated

    def delete_student(self, email: str) -> bool:
        cur = self._write("DELETE FROM students WHERE email = ?", (normalize_email(email),))
        return cur.rowcount > 0

    # Settings

    def get_settings(self) -> Optional[Settings]:
        row = self._conn.execute("SELECT * FROM settings WHERE id = 'global'").fetchone()
        if not row:
            return None
        return Settings(
            global_daily_token_limit=row["global_daily_token_limit"],
            global_monthly_cost_limit=_parse_dec(row["global_monthly_cost_limit"]),
            content_filter_mode=FilterMode(row["content_filter_mode"]),
            alert_email=row["alert_email"],
            updated_at=_parse_ts(row["updated_at"]),
        )

    def update_settings(self, settings: Settings) -> Settings:
        settings = replace(settings, updated_at=datetime.now(timezone.utc))
        self._write(
            """
            INSERT INTO settings
                (id, global_daily_token_limit, global_monthly_cost_limit,
                 content_filter_mode, alert_email, updated_at)
            VALUES ('global', ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                global_daily_token_limit=excluded.global_daily_token_limit,
                global_monthly_cost_limit=excluded.global_monthly_cost_limit,
                content_filter_mode=excluded.content_filter_mode,
                alert_email=excluded.alert_email,
                updated_at=excluded.updated_at
            """,
            (
                settings.global_daily_token_limit,
                _dec(settings.global_monthly_cost_limit),
                FilterMode(settings.content_filter_mode).value,
                settings.alert_email,
                _ts(settings.updated_at),
            ),
        )
        return settings

    # Usage ledger

    def _row_to_usage(self, row: sqlite3.Row) -> UsageEntry:
        return UsageEntry(
            student_email=row["student_email"],
            session_id=row["session_id"],
            tokens_used=row["tokens_used"],
            cost=Decimal(row["cost"]),
            student_name=row["student_name"],
            timestamp=_parse_ts(row["timestamp"]),
            entry_id=row["entry_id"],
        )

    def add_usage(self, entry: UsageEntry) -> UsageEntry:
        entry = replace(entry, student_email=normalize_email(entry.student_email))
        self._write(
            """
            INSERT INTO usage_entries
                (entry_id, session_id, student_email, student_name, tokens_used, cost, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entry_id,
                entry.session_id,
                entry.student_email,
                entry.student_name,
                entry.tokens_used,
                str(entry.cost),
                _ts(entry.timestamp),
            ),
        )
        return entry

    def list_usage(
        self, session_id: Optional[str] = None, student_email: Optional[str] = None
    ) -> List[UsageEntry]:
        clauses, params = [], []
        if session_id:
            clauses.append("session_id = ?")
            params.append(session_id)
        if student_email:
            clauses.append("student_email = ?")
            params.append(normalize_email(student_email))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT * FROM usage_entries {where} ORDER BY timestamp DESC",
            tuple(params),
        ).fetchall()
        return [self._row_to_usage(row) for row in rows]

    def list_usage_since(
        self, cutoff: datetime, student_email: Optional[str] = None
    ) -> List[UsageEntry]:
        if student_email:
            rows = self._conn.execute(
                "SELECT * FROM usage_entries WHERE timestamp >= ? AND student_email = ?",
                (_ts(cutoff), normalize_email(student_email)),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM usage_entries WHERE timestamp >= ?",
                (_ts(cutoff),),
            ).fetchall()
        return [self._row_to_usage(row) for row in rows]

    # Violations

    def _row_to_violation(self, row: sqlite3.Row) -> ViolationEvent:
        return ViolationEvent(
            student_email=row["student_email"],
            category=ViolationCategory(row["category"]),
            detail=row["detail"],
            session_id=row["session_id"],
            status=ViolationStatus(row["status"]),
            timestamp=_parse_ts(row["timestamp"]),
            content=row["content"],
            filter_mode=FilterMode(row["filter_mode"]) if row["filter_mode"] else None,
            bypassed_at=_parse_ts(row["bypassed_at"]),
            event_id=row["event_id"],
        )

    def create_violation(self, event: ViolationEvent) -> ViolationEvent:
        self._write(
            """
            INSERT INTO violation_events
                (event_id, student_email, session_id, category, detail, status,
                 content, filter_mode, bypassed_at, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.student_email,
                event.session_id,
                ViolationCategory(event.category).value,
                event.detail,
                ViolationStatus(event.status).value,
                event.content,
                FilterMode(event.filter_mode).value if event.filter_mode else None,
                _ts(event.bypassed_at) if event.bypassed_at else None,
                _ts(event.timestamp),
            ),
        )
        return event

    def get_violation(self, event_id: str) -> Optional[ViolationEvent]:
        row = self._conn.execute(
            "SELECT * FROM violation_events WHERE event_id = ?",
            (event_id,),
        ).fetchone()
        return self._row_to_violation(row) if row else None

    def update_violation(self, event: ViolationEvent) -> ViolationEvent:
        cur = self._write(
            "UPDATE violation_events SET status = ?, bypassed_at = ? WHERE event_id = ?",
            (
                ViolationStatus(event.status).value,
                _ts(event.bypassed_at) if event.bypassed_at else None,
                event.event_id,
            ),
        )
        if cur.rowcount == 0:
            raise KeyError(event.event_id)
        return event

    def list_violations(
        self, student_email: Optional[str] = None, category: Optional[str] = None
    ) -> List[ViolationEvent]:
        clauses, params = [], []
        if student_email:
            clauses.append("student_email = ?")
            params.append(normalize_email(student_email))
        if category:
            clauses.append("category = ?")
            params.append(ViolationCategory(category).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT * FROM violation_events {where} ORDER BY timestamp DESC",
            tuple(params),
        ).fetchall()
        return [self._row_to_violation(row) for row in rows]

    # Sessions and messages

    def create_session(self, session: ChatSession) -> ChatSession:
        session = replace(session, student_email=normalize_email(session.student_email))
        self._write(
            """
            INSERT INTO chat_sessions
                (session_id, student_email, student_name, character_name, situation, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                session.session_id,
                session.student_email,
                session.student_name,
                session.character_name,
                session.situation,
                _ts(session.created_at),
            ),
        )
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        row = self._conn.execute(
            "SELECT * FROM chat_sessions WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        if not row:
            return None
        return ChatSession(
            student_email=row["student_email"],
            character_name=row["character_name"],
            situation=row["situation"],
            student_name=row["student_name"],
            created_at=_parse_ts(row["created_at"]),
            session_id=row["session_id"],
        )

    def add_message(self, message: ChatMessage) -> ChatMessage:
        self._write(
            """
            INSERT INTO chat_messages (message_id, session_id, role, content, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                message.message_id,
                message.session_id,
                MessageRole(message.role).value,
                message.content,
                _ts(message.timestamp),
            ),
        )
        return message

    def list_messages(self, session_id: str) -> List[ChatMessage]:
        rows = self._conn.execute(
            "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY timestamp ASC, rowid ASC",
            (session_id,),
        ).fetchall()
        return [
            ChatMessage(
                session_id=row["session_id"],
                role=MessageRole(row["role"]),
                content=row["content"],
                timestamp=_parse_ts(row["timestamp"]),
                message_id=row["message_id"],
            )
            for row in rows
        ]

    # Admin tokens

    def create_admin_token(self, token: AdminToken) -> AdminToken:
        self._write(
            "INSERT INTO admin_tokens (token, expires_at, created_at) VALUES (?, ?, ?)",
            (token.token, _ts(token.expires_at), _ts(token.created_at)),
        )
        return token

    def get_admin_token(self, token: str) -> Optional[AdminToken]:
        row = self._conn.execute(
            "SELECT * FROM admin_tokens WHERE token = ? AND expires_at >= ?",
            (token, _ts(datetime.now(timezone.utc))),
        ).fetchone()
        if not row:
            return None
        return AdminToken(
            token=row["token"],
            expires_at=_parse_ts(row["expires_at"]),
            created_at=_parse_ts(row["created_at"]),
        )

    def delete_admin_token(self, token: str) -> bool:
        cur = self._write("DELETE FROM admin_tokens WHERE token = ?", (token,))
        return cur.rowcount > 0

    def cleanup_expired_tokens(self) -> int:
        cur = self._write(
            "DELETE FROM admin_tokens WHERE expires_at <= ?",
            (_ts(datetime.now(timezone.utc)),),
        )
        return cur.rowcount

    def close(self) -> None:
        self._conn.close()
