# qrsec/verdict.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple

NO_PROVIDER = "none"


class OutcomeState(str, Enum):
    MATCHED_THREAT = "matched-threat"
    MATCHED_SUSPICIOUS = "matched-suspicious"
    CLEAN = "clean"
    UNAVAILABLE = "unavailable"
    TIMED_OUT = "timed-out"
    MALFORMED_RESPONSE = "malformed-response"

    @property
    def is_failure(self) -> bool:
        return self in FAILURE_STATES


FAILURE_STATES = frozenset(
    {OutcomeState.UNAVAILABLE, OutcomeState.TIMED_OUT, OutcomeState.MALFORMED_RESPONSE}
)


class Status(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class ProviderOutcome:
    """One provider's answer for one URL, already reduced to a closed state."""

    provider: str
    state: OutcomeState
    detail: str = ""
    raw_detail: Dict[str, Any] = field(default_factory=dict, compare=False)
    latency: float = field(default=0.0, compare=False)


def _score_fits(status: Status, score: int) -> bool:
    if status is Status.DANGER:
        return score <= 20
    if status is Status.WARNING:
        return 21 <= score <= 70
    return score > 70


@dataclass(frozen=True)
class Verdict:
    url: str
    status: Status
    score: int
    explanation: Tuple[str, ...]
    provider_used: str
    outcomes: Tuple[ProviderOutcome, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.score <= 100:
            raise ValueError(f"score {self.score} outside [0, 100]")
        if not _score_fits(self.status, self.score):
            raise ValueError(f"score {self.score} inconsistent with status {self.status.value}")
        has_signal = any(not o.state.is_failure for o in self.outcomes)
        if has_signal and self.provider_used == NO_PROVIDER:
            raise ValueError("provider_used must name a provider when one answered")

    @property
    def threat_found(self) -> bool:
        return self.status is Status.DANGER

    def outcome_for(self, provider: str) -> ProviderOutcome | None:
        for outcome in self.outcomes:
            if outcome.provider == provider:
                return outcome
        return None
