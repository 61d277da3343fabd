"""
Raw-SQL access to the local store.

Pipelines read the already-synced hierarchy (funnels, columns) through this
instead of the ORM so the queries stay explicit about ordering.
"""
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text


class LocalStore:
    """Thin execute/execute_one wrapper over a SQLAlchemy engine."""

    def __init__(self, engine):
        self.engine = engine

    def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a statement with bound parameters.

        Returns:
            Result rows as dicts, or an empty list for statements that
            return no rows.
        """
        with self.engine.begin() as conn:
            result = conn.execute(text(sql), dict(params or {}))
            if not result.returns_rows:
                return []
            return [dict(row) for row in result.mappings()]

    def execute_one(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Like execute() but returns only the first row, or None."""
        rows = self.execute(sql, params)
        return rows[0] if rows else None
