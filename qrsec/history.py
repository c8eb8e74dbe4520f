# qrsec/history.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from qrsec.db import Database

MAX_HISTORY_LIMIT = 200


@dataclass(frozen=True)
class ScanRecord:
    """Append-only history row: ``{url, status, score, type, createdAt, ownerId}``."""

    url: str
    status: str
    score: int
    owner_id: str
    type: str = "url"
    created_at: Optional[datetime] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "status": self.status,
            "score": self.score,
            "type": self.type,
            "createdAt": _iso(self.created_at),
            "ownerId": self.owner_id,
        }


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return str(value)


class PostgresScanStore:
    def __init__(self, db: Database):
        self.db = db

    def add_scan_record(self, record: ScanRecord) -> None:
        self.db.ensure_schema()
        with self.db.cursor() as (_, cur):
            cur.execute(
                """
                INSERT INTO scan_records (owner_id, url, status, score, type, created_at)
                VALUES (%s, %s, %s, %s, %s, COALESCE(%s, NOW()))
                """,
                (
                    record.owner_id,
                    record.url[:2048],
                    record.status,
                    int(record.score),
                    record.type,
                    record.created_at,
                ),
            )

    def get_scan_history(self, owner_id: str, limit: int = 50) -> List[ScanRecord]:
        self.db.ensure_schema()
        limit = max(1, min(int(limit), MAX_HISTORY_LIMIT))
        with self.db.cursor() as (_, cur):
            cur.execute(
                """
                SELECT owner_id, url, status, score, type, created_at
                FROM scan_records
                WHERE owner_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT %s
                """,
                (owner_id, limit),
            )
            rows = cur.fetchall() or []

        return [
            ScanRecord(
                url=row["url"],
                status=row["status"],
                score=int(row["score"]),
                owner_id=row["owner_id"],
                type=row.get("type") or "url",
                created_at=row.get("created_at"),
            )
            for row in rows
        ]
