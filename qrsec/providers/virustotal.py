# qrsec/providers/virustotal.py

from __future__ import annotations

import base64
from typing import Any, Dict

from qrsec.providers.base import ProviderClient
from qrsec.providers.http_client import (
    MalformedResponse,
    ProviderHttp,
    ProviderTimeout,
    ensure_ok,
    json_body,
)
from qrsec.verdict import OutcomeState, ProviderOutcome

API_BASE = "https://www.virustotal.com/api/v3"


def url_identifier(url: str) -> str:
    """VirusTotal URL id: unpadded URL-safe base64 of the URL."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def _attributes(body: Dict[str, Any]) -> Dict[str, Any]:
    data = body.get("data")
    attributes = data.get("attributes") if isinstance(data, dict) else None
    if not isinstance(attributes, dict):
        raise MalformedResponse("missing data.attributes")
    return attributes


def _count(stats: Dict[str, Any], key: str) -> int:
    try:
        return int(stats.get(key) or 0)
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(f"non-numeric {key} count") from exc


class VirusTotalClient(ProviderClient):
    """
    Multi-engine URL reputation lookup.

    Tries the stored report for the URL first. When VirusTotal has never seen
    the URL (404) it is submitted for analysis and the analysis is polled a
    fixed number of times, never past the provider deadline.
    """

    name = "virustotal"
    display_name = "VirusTotal"

    def __init__(
        self,
        api_key: str,
        http: ProviderHttp,
        timeout_s: float = 12.0,
        poll_attempts: int = 3,
        poll_interval_s: float = 2.0,
        api_base: str = API_BASE,
    ):
        super().__init__(http, timeout_s)
        self.api_key = api_key
        self.poll_attempts = max(poll_attempts, 1)
        self.poll_interval_s = poll_interval_s
        self.api_base = api_base.rstrip("/")

    @property
    def _headers(self) -> Dict[str, str]:
        return {"x-apikey": self.api_key, "accept": "application/json"}

    def _lookup(self, url: str, deadline: float) -> ProviderOutcome:
        resp = self.http.request(
            "GET",
            f"{self.api_base}/urls/{url_identifier(url)}",
            deadline=deadline,
            headers=self._headers,
        )
        if resp.status_code == 404:
            return self._submit_and_poll(url, deadline)
        ensure_ok(resp)
        body = json_body(resp)
        stats = _attributes(body).get("last_analysis_stats")
        return self._from_stats(stats, body)

    def _submit_and_poll(self, url: str, deadline: float) -> ProviderOutcome:
        resp = self.http.request(
            "POST",
            f"{self.api_base}/urls",
            deadline=deadline,
            headers=self._headers,
            data={"url": url},
        )
        ensure_ok(resp)
        data = json_body(resp).get("data")
        analysis_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(analysis_id, str) or not analysis_id:
            raise MalformedResponse("submission returned no analysis id")

        for _ in range(self.poll_attempts):
            if self.http.clock() + self.poll_interval_s >= deadline:
                break
            self.http.sleep(self.poll_interval_s)

            resp = self.http.request(
                "GET",
                f"{self.api_base}/analyses/{analysis_id}",
                deadline=deadline,
                headers=self._headers,
            )
            ensure_ok(resp)
            attributes = _attributes(json_body(resp))
            if attributes.get("status") != "completed":
                continue
            stats = attributes.get("stats")
            # Same shape as a stored report so legacy consumers can read it.
            legacy = {
                "data": {
                    "id": analysis_id,
                    "type": "analysis",
                    "attributes": {"last_analysis_stats": stats, "status": "completed"},
                }
            }
            return self._from_stats(stats, legacy)

        raise ProviderTimeout("analysis did not complete in time")

    def _from_stats(self, stats: Any, raw: Dict[str, Any]) -> ProviderOutcome:
        if not isinstance(stats, dict):
            raise MalformedResponse("missing analysis stats")
        malicious = _count(stats, "malicious")
        suspicious = _count(stats, "suspicious")

        if malicious > 0:
            return self.outcome(
                OutcomeState.MATCHED_THREAT,
                f"{malicious} engines flagged as malicious.",
                raw,
            )
        if suspicious > 0:
            return self.outcome(
                OutcomeState.MATCHED_SUSPICIOUS,
                f"{suspicious} engines flagged as suspicious.",
                raw,
            )
        return self.outcome(OutcomeState.CLEAN, "No threats detected.", raw)
