"""Persistence store: settings, snapshots, run logs and provider tokens.

The orchestrator talks to the :class:`Store` protocol only. Snapshots and
logs are append-only; settings and tokens are one document per user.

:class:`JsonStore` keeps each collection in one JSON file under a data
directory::

    data/
        settings.json    {user_id: {"csp": {...}, "newsletter": {...}}}
        snapshots.json   [snapshot, ...]
        logs.json        [run log, ...]
        tokens.json      {user_id: token record}

Listing queries may raise :class:`IndexMissingError` in stores backed by an
indexed database; callers degrade to an empty result with a warning.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Protocol

from budget_newsletter.errors import PersistenceFailedError
from budget_newsletter.models import STATUS_SUCCESS, RunLog, Snapshot, TokenRecord

logger = logging.getLogger(__name__)

STAGE = "store"

SETTINGS_FILE = "settings.json"
SNAPSHOTS_FILE = "snapshots.json"
LOGS_FILE = "logs.json"
TOKENS_FILE = "tokens.json"


class Store(Protocol):
    """Protocol for the persistence collaborator."""

    async def get_settings(self, user_id: str) -> dict:
        ...

    async def put_settings(self, user_id: str, settings: dict) -> None:
        ...

    async def list_snapshots(self, user_id: str, limit: int = 52) -> list[Snapshot]:
        ...

    async def add_snapshot(self, snapshot: Snapshot) -> str:
        ...

    async def list_logs(self, user_id: str, limit: int = 10) -> list[RunLog]:
        ...

    async def add_log(self, log: RunLog) -> str:
        ...

    async def find_recent_success(self, user_id: str, since: datetime) -> RunLog | None:
        ...

    async def get_token(self, user_id: str) -> TokenRecord | None:
        ...

    async def put_token(self, user_id: str, token: TokenRecord) -> None:
        ...


class JsonStore:
    """File-backed :class:`Store` for a single machine.

    Args:
        data_dir: Directory holding the collection files. Created on the
            first write.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    # -- Settings -------------------------------------------------------------

    async def get_settings(self, user_id: str) -> dict:
        """Return the raw settings document, ``{}`` when none was saved."""
        return dict(self._read(SETTINGS_FILE, {}).get(user_id, {}))

    async def put_settings(self, user_id: str, settings: dict) -> None:
        documents = self._read(SETTINGS_FILE, {})
        documents[user_id] = settings
        self._write(SETTINGS_FILE, documents)

    # -- Snapshots ------------------------------------------------------------

    async def list_snapshots(self, user_id: str, limit: int = 52) -> list[Snapshot]:
        """Return *user_id*'s snapshots, newest ``week_ending`` first."""
        snapshots = [
            Snapshot.from_dict(doc)
            for doc in self._read(SNAPSHOTS_FILE, [])
            if doc.get("user_id") == user_id
        ]
        snapshots.sort(key=lambda s: (s.week_ending, s.created_at), reverse=True)
        return snapshots[:limit]

    async def add_snapshot(self, snapshot: Snapshot) -> str:
        snapshot.id = uuid.uuid4().hex
        documents = self._read(SNAPSHOTS_FILE, [])
        documents.append(snapshot.to_dict())
        self._write(SNAPSHOTS_FILE, documents)
        logger.debug("Stored snapshot %s for week ending %s", snapshot.id, snapshot.week_ending)
        return snapshot.id

    # -- Run logs -------------------------------------------------------------

    async def list_logs(self, user_id: str, limit: int = 10) -> list[RunLog]:
        """Return *user_id*'s run logs, newest ``started_at`` first."""
        return self._logs_for(user_id)[:limit]

    async def add_log(self, log: RunLog) -> str:
        log.id = uuid.uuid4().hex
        documents = self._read(LOGS_FILE, [])
        documents.append(log.to_dict())
        self._write(LOGS_FILE, documents)
        return log.id

    async def find_recent_success(self, user_id: str, since: datetime) -> RunLog | None:
        """Most recent successful run started at or after *since*."""
        for log in self._logs_for(user_id):
            if log.started_at < since:
                break
            if log.status == STATUS_SUCCESS:
                return log
        return None

    # -- Tokens ---------------------------------------------------------------

    async def get_token(self, user_id: str) -> TokenRecord | None:
        document = self._read(TOKENS_FILE, {}).get(user_id)
        return TokenRecord.from_dict(document) if document else None

    async def put_token(self, user_id: str, token: TokenRecord) -> None:
        documents = self._read(TOKENS_FILE, {})
        documents[user_id] = token.to_dict()
        self._write(TOKENS_FILE, documents)

    # -- Internal helpers -----------------------------------------------------

    def _logs_for(self, user_id: str) -> list[RunLog]:
        logs = [
            RunLog.from_dict(doc)
            for doc in self._read(LOGS_FILE, [])
            if doc.get("user_id") == user_id
        ]
        logs.sort(key=lambda log: log.started_at, reverse=True)
        return logs

    def _read(self, name: str, default: dict | list) -> dict | list:
        path = self.data_dir / name
        if not path.is_file():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise PersistenceFailedError(STAGE, f"Could not read {path}: {exc}") from exc

    def _write(self, name: str, documents: dict | list) -> None:
        path = self.data_dir / name
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(documents, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise PersistenceFailedError(STAGE, f"Could not write {path}: {exc}") from exc
