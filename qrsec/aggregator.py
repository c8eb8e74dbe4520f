# qrsec/aggregator.py

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Dict, Iterable, List, Optional, Sequence

from qrsec.providers.base import ProviderClient
from qrsec.verdict import NO_PROVIDER, OutcomeState, ProviderOutcome, Status, Verdict

logger = logging.getLogger("qrsec.aggregator")

DANGER_SCORE = 10
SUSPICIOUS_SCORE = 60
SAFE_SCORE = 95
UNKNOWN_SCORE = 50

INCOMPLETE_LINE = (
    "The check could not be completed: no reputation service answered. "
    "Treat this link with caution."
)


# ---------------------------------------------------------
# REDUCTION
# ---------------------------------------------------------
def _ordered(outcomes: Iterable[ProviderOutcome], priority: Sequence[str]) -> List[ProviderOutcome]:
    rank = {name: index for index, name in enumerate(priority)}
    # Unknown providers sort after configured ones, by name, so the order
    # never depends on arrival.
    return sorted(outcomes, key=lambda o: (rank.get(o.provider, len(rank)), o.provider))


def reduce_outcomes(
    url: str,
    outcomes: Iterable[ProviderOutcome],
    priority: Sequence[str],
    display_names: Optional[Dict[str, str]] = None,
) -> Verdict:
    """
    Collapse provider outcomes into one Verdict.

    threat > suspicious > clean > total failure. The cited provider is the
    first one in ``priority`` holding the winning state.
    """
    ordered = _ordered(outcomes, priority)
    names = display_names or {}

    def first(state: OutcomeState) -> Optional[ProviderOutcome]:
        return next((o for o in ordered if o.state is state), None)

    explanation = [f"{names.get(o.provider, o.provider)}: {o.detail or o.state.value}" for o in ordered]

    threat = first(OutcomeState.MATCHED_THREAT)
    suspicious = first(OutcomeState.MATCHED_SUSPICIOUS)
    clean = first(OutcomeState.CLEAN)

    if threat is not None:
        status, score, used = Status.DANGER, DANGER_SCORE, threat.provider
    elif suspicious is not None:
        status, score, used = Status.WARNING, SUSPICIOUS_SCORE, suspicious.provider
    elif clean is not None:
        status, score, used = Status.SAFE, SAFE_SCORE, clean.provider
    else:
        status, score, used = Status.WARNING, UNKNOWN_SCORE, NO_PROVIDER
        explanation.append(INCOMPLETE_LINE)

    return Verdict(
        url=url,
        status=status,
        score=score,
        explanation=tuple(explanation),
        provider_used=used,
        outcomes=tuple(ordered),
    )


# ---------------------------------------------------------
# FAN-OUT
# ---------------------------------------------------------
class VerdictAggregator:
    """
    Queries every provider concurrently and reduces whatever lands before
    ``timeout_s``. Stragglers count as timed out; their late answers are
    dropped.

    Each call gets its own workers, one per provider, so concurrent requests
    never queue behind each other inside the overall budget.
    """

    def __init__(self, providers: Sequence[ProviderClient], timeout_s: float = 15.0):
        self.providers = list(providers)
        self.timeout_s = timeout_s
        self.priority = [p.name for p in self.providers]
        self.display_names = {p.name: p.display_name or p.name for p in self.providers}

    def _collect(self, provider: ProviderClient, future: Future) -> ProviderOutcome:
        if not future.done():
            future.cancel()
            return ProviderOutcome(
                provider=provider.name,
                state=OutcomeState.TIMED_OUT,
                detail=f"No answer within the {self.timeout_s:g}s check budget.",
                latency=self.timeout_s,
            )
        try:
            return future.result()
        except Exception:
            # query() is not supposed to raise; keep the request alive if it does.
            logger.exception("provider %s raised past its boundary", provider.name)
            return ProviderOutcome(
                provider=provider.name,
                state=OutcomeState.UNAVAILABLE,
                detail="Service unavailable (internal error).",
            )

    def aggregate(self, url: str) -> Verdict:
        start = time.monotonic()
        executor = ThreadPoolExecutor(
            max_workers=max(len(self.providers), 1),
            thread_name_prefix="qrsec-provider",
        )
        try:
            futures = [(p, executor.submit(p.query, url)) for p in self.providers]
            wait([f for _, f in futures], timeout=self.timeout_s)
            outcomes = [self._collect(provider, future) for provider, future in futures]
        finally:
            # Stragglers keep running on their own threads; nobody waits for them.
            executor.shutdown(wait=False, cancel_futures=True)

        verdict = reduce_outcomes(url, outcomes, self.priority, self.display_names)

        logger.info(
            json.dumps(
                {
                    "event": "aggregate",
                    "status": verdict.status.value,
                    "score": verdict.score,
                    "provider_used": verdict.provider_used,
                    "states": {o.provider: o.state.value for o in verdict.outcomes},
                    "duration_ms": round((time.monotonic() - start) * 1000, 2),
                }
            )
        )
        return verdict
