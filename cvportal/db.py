"""SQLite persistence for CV portal generation.

Stores JSON documents in three tables:
- jobs: CV processing jobs (input profile under ``parsedData``)
- portals: generated PortalConfig documents keyed ``portal-{jobId}``
- qr_codes: trackable QR assets created for a portal
"""
import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from cvportal import config

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def set_dotted(document: Dict[str, Any], path: str, value: Any) -> None:
    """Set ``value`` at a dotted path, creating intermediate objects."""
    keys = path.split(".")
    target = document
    for key in keys[:-1]:
        child = target.get(key)
        if not isinstance(child, dict):
            child = {}
            target[key] = child
        target = child
    target[keys[-1]] = value


class PortalRepository:
    """Document store for jobs, portal configs and QR codes."""

    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path or config.DB_PATH)

    def get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    document_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS portals (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    document_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS qr_codes (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    target_url TEXT NOT NULL,
                    document_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_qr_codes_job_id
                ON qr_codes(job_id)
            """)

            conn.commit()
            logger.info("database_initialized", db_path=str(self.db_path))

        except Exception as e:
            conn.rollback()
            logger.error("database_init_failed", error=str(e))
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a job document, or None if it doesn't exist."""
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT document_json FROM jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()
            return json.loads(row["document_json"]) if row else None

        except Exception as e:
            logger.error("job_retrieval_failed", error=str(e), job_id=job_id)
            raise
        finally:
            conn.close()

    def save_job(self, job_id: str, document: Dict[str, Any]) -> None:
        """Insert or replace a job document."""
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT OR REPLACE INTO jobs (id, document_json, updated_at)
                VALUES (?, ?, ?)
            """, (job_id, json.dumps(document), _now()))
            conn.commit()

        except Exception as e:
            conn.rollback()
            logger.error("job_save_failed", error=str(e), job_id=job_id)
            raise
        finally:
            conn.close()

    def update_job_fields(self, job_id: str, updates: Dict[str, Any]) -> bool:
        """Apply dotted-path updates (``portalData.status``) to a job document.

        Returns:
            False if the job doesn't exist, True otherwise
        """
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT document_json FROM jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()
            if row is None:
                return False

            document = json.loads(row["document_json"])
            for path, value in updates.items():
                set_dotted(document, path, value)

            cursor.execute(
                "UPDATE jobs SET document_json = ?, updated_at = ? WHERE id = ?",
                (json.dumps(document), _now(), job_id),
            )
            conn.commit()
            logger.debug("job_fields_updated", job_id=job_id, fields=sorted(updates))
            return True

        except Exception as e:
            conn.rollback()
            logger.error("job_update_failed", error=str(e), job_id=job_id)
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Portal configs
    # ------------------------------------------------------------------

    def save_portal_config(self, portal_id: str, job_id: str, status: str, document: Dict[str, Any]) -> None:
        """Insert or replace a portal config document (last writer wins)."""
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT OR REPLACE INTO portals (id, job_id, status, document_json, updated_at)
                VALUES (?, ?, ?, ?, ?)
            """, (portal_id, job_id, status, json.dumps(document), _now()))
            conn.commit()
            logger.info("portal_config_saved", portal_id=portal_id, status=status)

        except Exception as e:
            conn.rollback()
            logger.error("portal_config_save_failed", error=str(e), portal_id=portal_id)
            raise
        finally:
            conn.close()

    def get_portal_config(self, portal_id: str) -> Optional[Dict[str, Any]]:
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT document_json FROM portals WHERE id = ?", (portal_id,))
            row = cursor.fetchone()
            return json.loads(row["document_json"]) if row else None

        except Exception as e:
            logger.error("portal_config_retrieval_failed", error=str(e), portal_id=portal_id)
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # QR codes
    # ------------------------------------------------------------------

    def insert_qr_code(self, job_id: str, kind: str, target_url: str, document: Dict[str, Any]) -> str:
        """Store a QR code record.

        Returns:
            ID of the new record
        """
        qr_id = f"qr-{uuid.uuid4().hex[:12]}"
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO qr_codes (id, job_id, kind, target_url, document_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (qr_id, job_id, kind, target_url, json.dumps(document), _now()))
            conn.commit()
            return qr_id

        except Exception as e:
            conn.rollback()
            logger.error("qr_code_insert_failed", error=str(e), job_id=job_id)
            raise
        finally:
            conn.close()

    def list_qr_codes(self, job_id: str) -> List[Dict[str, Any]]:
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, kind, target_url, document_json, created_at
                FROM qr_codes
                WHERE job_id = ?
                ORDER BY rowid
            """, (job_id,))

            codes = []
            for row in cursor.fetchall():
                code = json.loads(row["document_json"])
                code.update({
                    "id": row["id"],
                    "kind": row["kind"],
                    "targetUrl": row["target_url"],
                    "createdAt": row["created_at"],
                })
                codes.append(code)
            return codes

        except Exception as e:
            logger.error("qr_codes_retrieval_failed", error=str(e), job_id=job_id)
            raise
        finally:
            conn.close()
