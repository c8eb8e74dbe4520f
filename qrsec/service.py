# qrsec/service.py

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from qrsec.aggregator import VerdictAggregator
from qrsec.errors import ServiceUnavailableError
from qrsec.history import ScanRecord
from qrsec.url_utils import normalize_url
from qrsec.verdict import Verdict

logger = logging.getLogger("qrsec.service")


class ScanStore(Protocol):
    def add_scan_record(self, record: ScanRecord) -> None: ...

    def get_scan_history(self, owner_id: str, limit: int = 50) -> List[ScanRecord]: ...


class LinkCheckService:
    """
    Boundary in front of the aggregator.

    ``check`` raises ``InvalidInputError`` before any provider is touched and
    ``ServiceUnavailableError`` when nothing can be asked. Provider failures
    never surface here; they come back as a degraded Verdict.
    """

    def __init__(self, aggregator: VerdictAggregator, store: Optional[ScanStore] = None):
        self.aggregator = aggregator
        self.store = store

    @property
    def provider_names(self) -> List[str]:
        return list(self.aggregator.priority)

    @property
    def primary_provider(self) -> Optional[str]:
        names = self.provider_names
        return names[0] if names else None

    def check(self, raw_input: Any) -> Verdict:
        url = normalize_url(raw_input)

        if not self.aggregator.providers:
            raise ServiceUnavailableError(
                "No reputation providers are configured.",
                {"hint": "set VIRUSTOTAL_API_KEY and/or SAFE_BROWSING_API_KEY"},
            )

        try:
            verdict = self.aggregator.aggregate(url)
        except Exception as exc:
            logger.exception("aggregation failed for %s", url)
            raise ServiceUnavailableError("Link check is temporarily unavailable.") from exc

        logger.info(
            json.dumps(
                {
                    "event": "linkcheck",
                    "status": verdict.status.value,
                    "score": verdict.score,
                    "provider_used": verdict.provider_used,
                }
            )
        )
        return verdict

    def record_scan(self, verdict: Verdict, owner_id: Optional[str], scan_type: str = "url") -> bool:
        """Best-effort history write. Never raises; returns whether it stored."""
        if not owner_id or self.store is None:
            return False
        record = ScanRecord(
            url=verdict.url,
            status=verdict.status.value,
            score=verdict.score,
            owner_id=owner_id,
            type=scan_type,
            created_at=datetime.now(tz=timezone.utc),
        )
        try:
            self.store.add_scan_record(record)
        except Exception as exc:
            logger.error(
                json.dumps(
                    {"event": "persistence_failure", "owner_id": owner_id, "error": str(exc)}
                )
            )
            return False
        return True

    def history(self, owner_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        if self.store is None:
            raise ServiceUnavailableError("Scan history is not configured.")
        try:
            records = self.store.get_scan_history(owner_id, limit=limit)
        except Exception as exc:
            logger.exception("scan history read failed")
            raise ServiceUnavailableError("Scan history is temporarily unavailable.") from exc
        return [record.to_wire() for record in records]
