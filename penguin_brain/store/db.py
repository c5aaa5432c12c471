"""SQLite persistence layer standing in for the hosted tenant data store."""

from __future__ import annotations

import json
import re
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import CONFIG
from ..errors import ExecutionError

# Columns stored as JSON text and decoded on read.
JSON_COLUMNS = frozenset(
    {
        "metadata",
        "tool_args",
        "tool_result",
        "social_handles",
        "rate_card",
        "tags",
        "items",
        "embedding",
    }
)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")
_OPERATORS = {"=", "!=", "<", "<=", ">", ">=", "ilike", "is null", "not null", "in"}

# (column, operator, value)
Condition = Tuple[str, str, Any]

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(moment: datetime) -> str:
    """Render a datetime in the single sortable format used by every table."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def timestamp_ago(minutes: float = 0, hours: float = 0, now: Optional[datetime] = None) -> str:
    return to_timestamp((now or utcnow()) - timedelta(minutes=minutes, hours=hours))


def escape_like(term: str) -> str:
    """LIKE pattern matching ``term`` exactly, case-insensitively."""

    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def contains(term: str) -> str:
    """Build a LIKE pattern that matches ``term`` anywhere, escaping wildcards."""

    return f"%{escape_like(term)}%"


class PenguinDB:
    """Lightweight wrapper around a SQLite database.

    Every business table carries ``company_id``; callers pass it on each
    read and write so a query can never cross tenants.
    """

    def __init__(self, path: Path | str = CONFIG.paths.sqlite_path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    company_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT 'New conversation',
                    learnings_extracted INTEGER NOT NULL DEFAULT 0,
                    deleted_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    conversation_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    metadata TEXT,
                    model_used TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(conversation_id) REFERENCES conversations(id)
                );
                CREATE INDEX IF NOT EXISTS idx_messages_conversation_created
                    ON messages(conversation_id, created_at);

                CREATE TABLE IF NOT EXISTS actions (
                    id TEXT PRIMARY KEY,
                    conversation_id TEXT,
                    user_id TEXT NOT NULL,
                    company_id TEXT NOT NULL,
                    tool_name TEXT NOT NULL,
                    tool_args TEXT,
                    tool_result TEXT,
                    success INTEGER NOT NULL,
                    error_message TEXT,
                    summary TEXT,
                    entity_type TEXT,
                    entity_id TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_actions_user_tool_created
                    ON actions(user_id, tool_name, created_at DESC);

                CREATE TABLE IF NOT EXISTS usage_logs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    company_id TEXT NOT NULL,
                    conversation_id TEXT,
                    provider TEXT,
                    model TEXT,
                    input_chars INTEGER,
                    output_chars INTEGER,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    assistant_name TEXT,
                    learning_enabled INTEGER
                );

                CREATE TABLE IF NOT EXISTS user_roles (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS llm_connections (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    api_key_vault_id TEXT,
                    base_url TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS vault_secrets (
                    id TEXT PRIMARY KEY,
                    secret TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS knowledge_entries (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    user_id TEXT,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    category TEXT,
                    embedding TEXT,
                    tags TEXT,
                    last_accessed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS clients (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    owner_id TEXT,
                    first_name TEXT,
                    last_name TEXT,
                    email TEXT,
                    phone TEXT,
                    company TEXT,
                    notes TEXT,
                    status TEXT NOT NULL DEFAULT 'ACTIVE',
                    lead_stage TEXT NOT NULL DEFAULT 'NONE',
                    lead_source TEXT,
                    lead_priority TEXT DEFAULT 'MEDIUM',
                    value_estimate REAL,
                    project_id TEXT,
                    created_by_automation INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_clients_company ON clients(company_id);

                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    created_by TEXT,
                    title TEXT NOT NULL,
                    description TEXT,
                    priority TEXT DEFAULT 'MEDIUM',
                    type TEXT DEFAULT 'TASK',
                    status TEXT NOT NULL DEFAULT 'OPEN',
                    due_date TEXT,
                    assignee_id TEXT,
                    client_id TEXT,
                    lead_id TEXT,
                    project_id TEXT,
                    resolved_at TEXT,
                    resolution_notes TEXT,
                    created_by_automation INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_tasks_company ON tasks(company_id);

                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    created_by TEXT,
                    title TEXT NOT NULL,
                    property_type TEXT,
                    address TEXT,
                    district TEXT,
                    price REAL,
                    description TEXT,
                    status TEXT DEFAULT 'ACTIVE',
                    payment_date TEXT,
                    revenue_type TEXT,
                    bedrooms INTEGER,
                    bathrooms INTEGER,
                    square_feet REAL,
                    is_featured INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_projects_company ON projects(company_id);

                CREATE TABLE IF NOT EXISTS talent (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    created_by TEXT,
                    name TEXT NOT NULL,
                    stage_name TEXT,
                    category TEXT,
                    email TEXT,
                    phone TEXT,
                    social_handles TEXT,
                    follower_count INTEGER,
                    engagement_rate REAL,
                    rate_card TEXT,
                    availability TEXT DEFAULT 'available',
                    contract_start TEXT,
                    contract_end TEXT,
                    tags TEXT,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS bookings (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    created_by TEXT,
                    talent_id TEXT NOT NULL,
                    client_id TEXT,
                    project_id TEXT,
                    booking_type TEXT NOT NULL,
                    date TEXT NOT NULL,
                    duration TEXT,
                    fee REAL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    payment_status TEXT DEFAULT 'pending',
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS invoices (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    created_by TEXT,
                    invoice_number TEXT NOT NULL,
                    client_id TEXT NOT NULL,
                    talent_id TEXT,
                    booking_id TEXT,
                    items TEXT,
                    subtotal REAL NOT NULL DEFAULT 0,
                    tax_rate REAL NOT NULL DEFAULT 0,
                    tax_amount REAL NOT NULL DEFAULT 0,
                    total REAL NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'draft',
                    issue_date TEXT,
                    due_date TEXT,
                    paid_date TEXT,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS expenses (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    created_by TEXT,
                    description TEXT NOT NULL,
                    category TEXT,
                    amount REAL NOT NULL,
                    date TEXT,
                    project_id TEXT,
                    talent_id TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    approved_by TEXT,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

    # ------------------------------------------------------------------ #
    # Low-level helpers
    # ------------------------------------------------------------------ #

    def _run(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            with self._connect() as conn:
                cursor = conn.execute(sql, tuple(params))
                return cursor.fetchall()
        except sqlite3.Error as exc:
            raise ExecutionError(f"Data store error: {exc}") from exc

    def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        try:
            with self._connect() as conn:
                cursor = conn.execute(sql, tuple(params))
                return cursor.rowcount
        except sqlite3.Error as exc:
            raise ExecutionError(f"Data store error: {exc}") from exc

    @staticmethod
    def _check_identifier(name: str) -> str:
        if not _IDENTIFIER.match(name):
            raise ExecutionError(f"Invalid identifier: {name!r}")
        return name

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column in JSON_COLUMNS and value is not None:
            return json.dumps(value, ensure_ascii=False)
        if isinstance(value, bool):
            return int(value)
        return value

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        for column in JSON_COLUMNS.intersection(record):
            raw = record[column]
            if isinstance(raw, str):
                try:
                    record[column] = json.loads(raw)
                except json.JSONDecodeError:
                    pass
        return record

    def _where(
        self,
        company_id: Optional[str],
        conditions: Iterable[Condition],
        search: Sequence[Tuple[Sequence[str], str]],
    ) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if company_id is not None:
            clauses.append("company_id = ?")
            params.append(company_id)
        for column, operator, value in conditions:
            column = self._check_identifier(column)
            if operator not in _OPERATORS:
                raise ExecutionError(f"Unsupported operator: {operator!r}")
            if operator == "ilike":
                clauses.append(f"{column} LIKE ? ESCAPE '\\'")
                params.append(value)
            elif operator == "is null":
                clauses.append(f"{column} IS NULL")
            elif operator == "not null":
                clauses.append(f"{column} IS NOT NULL")
            elif operator == "in":
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            else:
                clauses.append(f"{column} {operator} ?")
                params.append(self._encode(column, value))
        for columns, pattern in search:
            ors = [f"{self._check_identifier(column)} LIKE ? ESCAPE '\\'" for column in columns]
            clauses.append(f"({' OR '.join(ors)})")
            params.extend(pattern for _ in columns)
        sql = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return sql, params

    # ------------------------------------------------------------------ #
    # Tenant-scoped CRUD
    # ------------------------------------------------------------------ #

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row, filling ``id`` and timestamps, and return it as stored."""

        table = self._check_identifier(table)
        row = dict(values)
        row.setdefault("id", str(uuid.uuid4()))
        now = to_timestamp(utcnow())
        columns = self._columns(table)
        if "created_at" in columns:
            row.setdefault("created_at", now)
        if "updated_at" in columns:
            row.setdefault("updated_at", now)
        names = [self._check_identifier(name) for name in row]
        placeholders = ", ".join("?" for _ in names)
        self._write(
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
            [self._encode(name, row[name]) for name in names],
        )
        return self.get(table, row["id"])

    def get(self, table: str, row_id: str, company_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        table = self._check_identifier(table)
        where, params = self._where(company_id, [("id", "=", row_id)], ())
        rows = self._run(f"SELECT * FROM {table}{where} LIMIT 1", params)
        return self._decode(rows[0]) if rows else None

    def update(
        self,
        table: str,
        row_id: str,
        values: Dict[str, Any],
        company_id: Optional[str] = None,
    ) -> bool:
        """Apply ``values`` to one row; return False when no row matched."""

        table = self._check_identifier(table)
        row = dict(values)
        if "updated_at" in self._columns(table):
            row.setdefault("updated_at", to_timestamp(utcnow()))
        if not row:
            return self.get(table, row_id, company_id) is not None
        assignments = ", ".join(f"{self._check_identifier(name)} = ?" for name in row)
        where, params = self._where(company_id, [("id", "=", row_id)], ())
        changed = self._write(
            f"UPDATE {table} SET {assignments}{where}",
            [self._encode(name, value) for name, value in row.items()] + params,
        )
        return changed > 0

    def delete(self, table: str, row_id: str, company_id: Optional[str] = None) -> bool:
        table = self._check_identifier(table)
        where, params = self._where(company_id, [("id", "=", row_id)], ())
        return self._write(f"DELETE FROM {table}{where}", params) > 0

    def select(
        self,
        table: str,
        *,
        company_id: Optional[str] = None,
        where: Iterable[Condition] = (),
        search: Sequence[Tuple[Sequence[str], str]] = (),
        order_by: str = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Filtered select.

        ``where`` conditions are AND-ed; ``search`` is a list of
        ``(columns, pattern)`` groups; a group matches when any of its columns
        is LIKE the pattern, and every group must match.
        """

        table = self._check_identifier(table)
        clause, params = self._where(company_id, where, search)
        direction = "DESC" if descending else "ASC"
        sql = f"SELECT * FROM {table}{clause} ORDER BY {self._check_identifier(order_by)} {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [self._decode(row) for row in self._run(sql, params)]

    def count(
        self,
        table: str,
        *,
        company_id: Optional[str] = None,
        where: Iterable[Condition] = (),
    ) -> int:
        table = self._check_identifier(table)
        clause, params = self._where(company_id, where, ())
        rows = self._run(f"SELECT COUNT(*) AS n FROM {table}{clause}", params)
        return int(rows[0]["n"]) if rows else 0

    def _columns(self, table: str) -> List[str]:
        rows = self._run(f"PRAGMA table_info({table})")
        return [row["name"] for row in rows]


__all__ = [
    "PenguinDB",
    "contains",
    "escape_like",
    "timestamp_ago",
    "to_timestamp",
    "utcnow",
]
