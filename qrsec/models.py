from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from qrsec.verdict import NO_PROVIDER, Verdict

class LinkCheckRequest(BaseModel):
    url: str = Field(..., description="URL typed by the user or decoded from a QR code.")
    type: Literal["url", "qr"] = Field(
        "url", description="How the URL reached the client; stored on the ScanRecord."
    )

class LinkCheckResponse(BaseModel):
    service: str
    result: Dict[str, Any] = Field(default_factory=dict)
    threatFound: bool
    status: Literal["safe", "warning", "danger"]
    score: int = Field(..., ge=0, le=100)
    explanation: List[str] = Field(default_factory=list)
    providerUsed: str
    url: str

class ErrorResponse(BaseModel):
    error: str
    kind: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    retry_after: Optional[int] = None


def build_linkcheck_response(
    verdict: Verdict,
    display_names: Dict[str, str],
    primary: Optional[str],
) -> LinkCheckResponse:
    # `service`/`result` keep the old provider-shaped contract alive for
    # clients that predate status/score.
    cited = verdict.provider_used if verdict.provider_used != NO_PROVIDER else primary
    outcome = verdict.outcome_for(cited) if cited else None
    return LinkCheckResponse(
        service=display_names.get(cited, cited) if cited else NO_PROVIDER,
        result=dict(outcome.raw_detail) if outcome else {},
        threatFound=verdict.threat_found,
        status=verdict.status.value,
        score=verdict.score,
        explanation=list(verdict.explanation),
        providerUsed=verdict.provider_used,
        url=verdict.url,
    )
