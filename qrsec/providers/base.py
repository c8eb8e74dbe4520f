# qrsec/providers/base.py

from __future__ import annotations

import dataclasses
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from qrsec.providers.http_client import (
    MalformedResponse,
    ProviderHttp,
    ProviderTimeout,
    ProviderUnavailable,
)
from qrsec.verdict import OutcomeState, ProviderOutcome

logger = logging.getLogger("qrsec.providers")


class ProviderClient(ABC):
    """
    Adapter around one upstream reputation service.

    ``query`` never raises: every failure ends up as one of the failure
    states of ``OutcomeState`` so the aggregator only deals with outcomes.
    Subclasses implement ``_lookup`` and may raise the ``ProviderError``
    family from ``http_client``.
    """

    name: str = ""
    display_name: str = ""

    def __init__(self, http: ProviderHttp, timeout_s: float = 12.0):
        self.http = http
        self.timeout_s = timeout_s

    def outcome(
        self,
        state: OutcomeState,
        detail: str,
        raw: Optional[Dict[str, Any]] = None,
    ) -> ProviderOutcome:
        return ProviderOutcome(provider=self.name, state=state, detail=detail, raw_detail=raw or {})

    def query(self, url: str) -> ProviderOutcome:
        start = self.http.clock()
        deadline = start + self.timeout_s
        try:
            result = self._lookup(url, deadline)
        except ProviderTimeout:
            result = self.outcome(OutcomeState.TIMED_OUT, f"No answer within {self.timeout_s:g}s.")
        except MalformedResponse as exc:
            result = self.outcome(OutcomeState.MALFORMED_RESPONSE, f"Unreadable response ({exc}).")
        except ProviderUnavailable as exc:
            result = self.outcome(OutcomeState.UNAVAILABLE, f"Service unavailable ({exc}).")
        except Exception:
            logger.exception("unexpected failure in provider %s", self.name)
            result = self.outcome(OutcomeState.UNAVAILABLE, "Service unavailable (internal error).")

        latency = self.http.clock() - start
        logger.info(
            json.dumps(
                {
                    "event": "provider_query",
                    "provider": self.name,
                    "state": result.state.value,
                    "latency_ms": round(latency * 1000, 2),
                }
            )
        )
        return dataclasses.replace(result, latency=latency)

    @abstractmethod
    def _lookup(self, url: str, deadline: float) -> ProviderOutcome:
        ...
