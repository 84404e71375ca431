"""Database helpers for the project record store."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import extras, pool

from projectmap.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


class RecordStoreError(RuntimeError):
    """Raised when project records cannot be loaded."""


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


def close_pool() -> None:
    global _connection_pool
    if _connection_pool is not None:
        _connection_pool.closeall()
        _connection_pool = None
        logger.info("Database connection pool closed")


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


_PROJECT_COLUMNS = """
    p.id,
    p.name,
    p.status,
    p.budget,
    p.start_date,
    p.client_id,
    p.address,
    p.city,
    p.state,
    p.zip_code,
    p.latitude,
    p.longitude,
    c.name AS client_name
"""

_SELECT_PROJECTS = f"""
SELECT {_PROJECT_COLUMNS}
FROM projects p
LEFT JOIN clients c ON c.id = p.client_id
WHERE p.organization_id = %(organization_id)s
  AND p.address IS NOT NULL
ORDER BY p.created_at, p.id;
"""

_SELECT_PROJECT = f"""
SELECT {_PROJECT_COLUMNS}
FROM projects p
LEFT JOIN clients c ON c.id = p.client_id
WHERE p.id = %(project_id)s;
"""

_SELECT_PLANNED = """
SELECT id, name, status, address
FROM projects
WHERE organization_id = %(organization_id)s
  AND status = 'planned';
"""


def _fetch(sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    try:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            conn.commit()
    except psycopg2.Error as exc:
        raise RecordStoreError(str(exc)) from exc
    return [dict(row) for row in rows]


def fetch_projects(organization_id: str) -> List[Dict[str, Any]]:
    """Return every project of the organization that has an address, with its client name."""
    if not organization_id:
        raise ValueError("organization_id is required")
    rows = _fetch(_SELECT_PROJECTS, {"organization_id": organization_id})
    logger.info("Fetched %d projects with addresses for organization %s", len(rows), organization_id)
    return rows


def fetch_project(project_id: str) -> Optional[Dict[str, Any]]:
    """Return the full record for one project, or None when it no longer exists."""
    rows = _fetch(_SELECT_PROJECT, {"project_id": project_id})
    return rows[0] if rows else None


def fetch_planned_projects(organization_id: str) -> List[Dict[str, Any]]:
    """Narrow query used to spot planned projects the map query drops."""
    return _fetch(_SELECT_PLANNED, {"organization_id": organization_id})


def log_missing_planned(organization_id: str, map_rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Log planned projects that the map query excluded. Diagnostic only."""
    try:
        planned = fetch_planned_projects(organization_id)
    except RecordStoreError as exc:
        logger.warning("Planned-project diagnostic query failed: %s", exc)
        return []

    seen = {str(row.get("id")) for row in map_rows}
    missing = [row for row in planned if str(row.get("id")) not in seen]
    logger.info("Total planned projects in store: %d", len(planned))
    for row in missing:
        logger.info(
            'Planned project missing from map query: "%s" (ID: %s) - Address: %s',
            row.get("name"),
            row.get("id"),
            row.get("address") or "NO ADDRESS",
        )
    return missing
