"""
SQLite mirror of the bearer credential for session restore.

This is the only state the package persists. Cached responses are never
written here.
"""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from .token_store import Credential

logger = logging.getLogger("auth.mirror")

TOKEN_KEY = "auth_token"

SCHEMA = """
CREATE TABLE IF NOT EXISTS session_tokens (
    key TEXT PRIMARY KEY,
    token TEXT NOT NULL,
    issued_at REAL NOT NULL
);
"""


class TokenMirror:
    """Key/value table holding at most one credential."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database with schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def load(self) -> Optional[Credential]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT token, issued_at FROM session_tokens WHERE key = ?",
                (TOKEN_KEY,),
            ).fetchone()
        if row is None:
            return None
        return Credential(token=row["token"], issued_at=row["issued_at"])

    def save(self, credential: Credential) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO session_tokens (key, token, issued_at)
                VALUES (?, ?, ?)
                """,
                (TOKEN_KEY, credential.token, credential.issued_at),
            )
            conn.commit()
        logger.debug(f"Mirrored credential to {self.db_path}")

    def clear(self) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM session_tokens WHERE key = ?", (TOKEN_KEY,))
            conn.commit()
