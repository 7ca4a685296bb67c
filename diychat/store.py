"""
sqlite persistence for backends, projects, conversations, todos and
calendar events.

Rows come back as plain dicts with JSON columns already decoded. Every public
method holds the store lock for its whole read-modify-write, which is the
per-row atomicity the chat turns rely on.
"""

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .config import DEFAULT_CONVERSATION_TITLE, DEFAULT_PROJECT_NAME
from .errors import NotFoundError, ProtectedResourceError
from .types import Backend, Conversation, Message, Project

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS backends (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    provider_type TEXT NOT NULL CHECK(provider_type IN ('openai', 'anthropic')),
    base_url TEXT NOT NULL,
    api_key_encrypted TEXT NOT NULL DEFAULT '',
    models TEXT NOT NULL DEFAULT '[]',
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    system_prompt TEXT NOT NULL DEFAULT '',
    default_backend_id TEXT,
    default_model TEXT,
    enabled_tools TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    project_id TEXT,
    title TEXT NOT NULL,
    messages TEXT NOT NULL DEFAULT '[]',
    provider_override TEXT,
    model_override TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS todos (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    done INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS calendar_events (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    start_time TEXT,
    end_time TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_BACKEND_FIELDS = ("name", "provider_type", "base_url", "api_key_encrypted", "models", "is_default")
_PROJECT_FIELDS = ("name", "system_prompt", "default_backend_id", "default_model", "enabled_tools")
_CONVERSATION_FIELDS = ("title", "messages", "provider_override", "model_override")
_TODO_FIELDS = ("title", "description", "done")
_EVENT_FIELDS = ("title", "description", "start_time", "end_time")

_JSON_COLUMNS = ("models", "enabled_tools", "messages")
_BOOL_COLUMNS = ("is_default", "done")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def _decode_row(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    record = dict(row)
    for column in _JSON_COLUMNS:
        if column in record:
            try:
                record[column] = json.loads(record[column] or "[]")
            except json.JSONDecodeError:
                record[column] = []
    for column in _BOOL_COLUMNS:
        if column in record:
            record[column] = bool(record[column])
    return record


def _encode_value(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return json.dumps(value if value is not None else [])
    if column in _BOOL_COLUMNS:
        return 1 if value else 0
    return value


class Store:
    """
    Row store behind a small CRUD interface.

    Args:
        path: sqlite database file, or ":memory:".
        tool_names: Tools enabled on the seeded "Default" project.
    """

    def __init__(self, path: Union[str, Path] = ":memory:", tool_names: Iterable[str] = ()):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.executescript(SCHEMA)
        self.conn.commit()
        self._seed_default_project(list(tool_names))

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _seed_default_project(self, tool_names: List[str]) -> None:
        with self._lock:
            row = self.conn.execute(
                "SELECT id FROM projects WHERE name = ?", (DEFAULT_PROJECT_NAME,)
            ).fetchone()
            if row is None:
                self.create_project({"name": DEFAULT_PROJECT_NAME, "enabled_tools": tool_names})
                logger.info("Seeded %r project with %d tools", DEFAULT_PROJECT_NAME, len(tool_names))

    # ==========================================================================
    # Generic helpers
    # ==========================================================================

    def _get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return _decode_row(row)

    def _insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        self.conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            [_encode_value(c, values[c]) for c in columns],
        )
        return self._get(table, values["id"])

    def _update(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        allowed: Iterable[str],
        touch: bool = False,
    ) -> Optional[Dict[str, Any]]:
        if self._get(table, record_id) is None:
            return None
        fields = {k: v for k, v in data.items() if k in allowed}
        if touch:
            fields["updated_at"] = utc_now_iso()
        if fields:
            assignments = ", ".join(f"{column} = ?" for column in fields)
            self.conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                [_encode_value(c, v) for c, v in fields.items()] + [record_id],
            )
        return self._get(table, record_id)

    def _delete(self, table: str, record_id: str) -> bool:
        cur = self.conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        return cur.rowcount > 0

    # ==========================================================================
    # Backends
    # ==========================================================================

    def list_backends(self) -> List[Backend]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM backends ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
            return [_decode_row(r) for r in rows]

    def get_backend(self, backend_id: str) -> Optional[Backend]:
        with self._lock:
            return self._get("backends", backend_id)

    def get_default_backend(self) -> Optional[Backend]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM backends WHERE is_default = 1 LIMIT 1"
            ).fetchone() or self.conn.execute(
                "SELECT * FROM backends ORDER BY created_at ASC, rowid ASC LIMIT 1"
            ).fetchone()
            return _decode_row(row)

    def create_backend(self, data: Dict[str, Any]) -> Backend:
        with self._lock:
            backend = self._insert("backends", {
                "id": new_id(),
                "name": data["name"],
                "provider_type": data["provider_type"],
                "base_url": data["base_url"],
                "api_key_encrypted": data.get("api_key_encrypted") or "",
                "models": data.get("models") or [],
                "is_default": bool(data.get("is_default")),
                "created_at": utc_now_iso(),
            })
            if backend["is_default"]:
                self._clear_other_defaults(backend["id"])
            self._ensure_default_backend()
            self.conn.commit()
            logger.info("Created backend %s (%s)", backend["id"], backend["provider_type"])
            return self._get("backends", backend["id"])

    def update_backend(self, backend_id: str, data: Dict[str, Any]) -> Optional[Backend]:
        with self._lock:
            backend = self._update("backends", backend_id, data, _BACKEND_FIELDS)
            if backend is None:
                return None
            if data.get("is_default"):
                self._clear_other_defaults(backend_id)
            self._ensure_default_backend()
            self.conn.commit()
            return self._get("backends", backend_id)

    def delete_backend(self, backend_id: str) -> bool:
        with self._lock:
            deleted = self._delete("backends", backend_id)
            self._ensure_default_backend()
            self.conn.commit()
            if deleted:
                logger.info("Deleted backend %s", backend_id)
            return deleted

    def _clear_other_defaults(self, backend_id: str) -> None:
        self.conn.execute("UPDATE backends SET is_default = 0 WHERE id != ?", (backend_id,))

    def _ensure_default_backend(self) -> None:
        """Promote the oldest backend when rows exist but none is default."""
        has_default = self.conn.execute(
            "SELECT 1 FROM backends WHERE is_default = 1 LIMIT 1"
        ).fetchone()
        if has_default is None:
            self.conn.execute(
                "UPDATE backends SET is_default = 1 WHERE id = "
                "(SELECT id FROM backends ORDER BY created_at ASC, rowid ASC LIMIT 1)"
            )

    # ==========================================================================
    # Projects
    # ==========================================================================

    def list_projects(self) -> List[Project]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM projects ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
            return [_decode_row(r) for r in rows]

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            return self._get("projects", project_id)

    def create_project(self, data: Dict[str, Any]) -> Project:
        with self._lock:
            project = self._insert("projects", {
                "id": new_id(),
                "name": data["name"],
                "system_prompt": data.get("system_prompt") or "",
                "default_backend_id": data.get("default_backend_id"),
                "default_model": data.get("default_model"),
                "enabled_tools": data.get("enabled_tools") or [],
                "created_at": utc_now_iso(),
            })
            self.conn.commit()
            return project

    def update_project(self, project_id: str, data: Dict[str, Any]) -> Optional[Project]:
        with self._lock:
            project = self._update("projects", project_id, data, _PROJECT_FIELDS)
            self.conn.commit()
            return project

    def delete_project(self, project_id: str) -> bool:
        with self._lock:
            project = self._get("projects", project_id)
            if project is None:
                raise NotFoundError(f"Project {project_id} not found")
            if project["name"] == DEFAULT_PROJECT_NAME:
                raise ProtectedResourceError("Cannot delete the default project")
            deleted = self._delete("projects", project_id)
            self.conn.commit()
            return deleted

    # ==========================================================================
    # Conversations
    # ==========================================================================

    def list_conversations(self, project_id: Optional[str] = None) -> List[Conversation]:
        with self._lock:
            if project_id:
                rows = self.conn.execute(
                    "SELECT * FROM conversations WHERE project_id = ? "
                    "ORDER BY updated_at DESC, rowid DESC",
                    (project_id,),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM conversations ORDER BY updated_at DESC, rowid DESC"
                ).fetchall()
            return [_decode_row(r) for r in rows]

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            return self._get("conversations", conversation_id)

    def create_conversation(self, data: Dict[str, Any]) -> Conversation:
        with self._lock:
            now = utc_now_iso()
            conversation = self._insert("conversations", {
                "id": new_id(),
                "project_id": data.get("project_id"),
                "title": data.get("title") or DEFAULT_CONVERSATION_TITLE,
                "messages": data.get("messages") or [],
                "provider_override": data.get("provider_override"),
                "model_override": data.get("model_override"),
                "created_at": now,
                "updated_at": now,
            })
            self.conn.commit()
            return conversation

    def update_conversation(self, conversation_id: str, data: Dict[str, Any]) -> Optional[Conversation]:
        with self._lock:
            conversation = self._update(
                "conversations", conversation_id, data, _CONVERSATION_FIELDS, touch=True
            )
            self.conn.commit()
            return conversation

    def save_turn(self, conversation_id: str, messages: List[Message], title: str) -> Optional[Conversation]:
        """Replace the message list and title of a conversation in one update."""
        return self.update_conversation(conversation_id, {"messages": messages, "title": title})

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._lock:
            deleted = self._delete("conversations", conversation_id)
            self.conn.commit()
            return deleted

    # ==========================================================================
    # Todos
    # ==========================================================================

    def list_todos(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM todos ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
            return [_decode_row(r) for r in rows]

    def create_todo(self, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            now = utc_now_iso()
            todo = self._insert("todos", {
                "id": new_id(),
                "title": data["title"],
                "description": data.get("description") or "",
                "done": bool(data.get("done")),
                "created_at": now,
                "updated_at": now,
            })
            self.conn.commit()
            return todo

    def update_todo(self, todo_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            todo = self._update("todos", todo_id, data, _TODO_FIELDS, touch=True)
            self.conn.commit()
            return todo

    def delete_todo(self, todo_id: str) -> bool:
        with self._lock:
            deleted = self._delete("todos", todo_id)
            self.conn.commit()
            return deleted

    # ==========================================================================
    # Calendar events
    # ==========================================================================

    def list_calendar_events(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            if start and end:
                rows = self.conn.execute(
                    "SELECT * FROM calendar_events WHERE start_time >= ? AND start_time <= ? "
                    "ORDER BY start_time ASC",
                    (start, end),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM calendar_events ORDER BY start_time ASC"
                ).fetchall()
            return [_decode_row(r) for r in rows]

    def create_calendar_event(self, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            now = utc_now_iso()
            event = self._insert("calendar_events", {
                "id": new_id(),
                "title": data["title"],
                "description": data.get("description") or "",
                "start_time": data.get("start_time"),
                "end_time": data.get("end_time"),
                "created_at": now,
                "updated_at": now,
            })
            self.conn.commit()
            return event

    def update_calendar_event(self, event_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            event = self._update("calendar_events", event_id, data, _EVENT_FIELDS, touch=True)
            self.conn.commit()
            return event

    def delete_calendar_event(self, event_id: str) -> bool:
        with self._lock:
            deleted = self._delete("calendar_events", event_id)
            self.conn.commit()
            return deleted
