# qrsec/providers/safe_browsing.py

from __future__ import annotations

from typing import Any, Dict, List
from urllib.parse import urlsplit, urlunsplit

from qrsec.providers.base import ProviderClient
from qrsec.providers.http_client import MalformedResponse, ProviderHttp, ensure_ok, json_body
from qrsec.verdict import OutcomeState, ProviderOutcome

API_URL = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
CLIENT_ID = "qrsec"
CLIENT_VERSION = "1.0"

THREAT_TYPES = [
    "MALWARE",
    "SOCIAL_ENGINEERING",
    "UNWANTED_SOFTWARE",
    "POTENTIALLY_HARMFUL_APPLICATION",
]


def url_variants(url: str) -> List[str]:
    """
    The URL plus its trailing-slash and ``www.`` twins, the given URL first.

    Lists often carry only one spelling of a host or path, so the batch
    lookup covers both.
    """
    parts = urlsplit(url)

    netlocs = [parts.netloc]
    host = parts.hostname or ""
    if "@" not in parts.netloc and not host.replace(".", "").isdigit():
        if parts.netloc.startswith("www."):
            netlocs.append(parts.netloc[4:])
        else:
            netlocs.append("www." + parts.netloc)

    paths = [parts.path]
    if parts.path in ("", "/"):
        paths.append("/" if parts.path == "" else "")
    elif parts.path.endswith("/"):
        paths.append(parts.path.rstrip("/"))
    else:
        paths.append(parts.path + "/")

    variants = [
        urlunsplit((parts.scheme, netloc, path, parts.query, parts.fragment))
        for netloc in netlocs
        for path in paths
    ]
    return list(dict.fromkeys([url] + variants))


def build_payload(url: str) -> Dict[str, Any]:
    return {
        "client": {"clientId": CLIENT_ID, "clientVersion": CLIENT_VERSION},
        "threatInfo": {
            "threatTypes": THREAT_TYPES,
            "platformTypes": ["ANY_PLATFORM"],
            "threatEntryTypes": ["URL"],
            "threatEntries": [{"url": variant} for variant in url_variants(url)],
        },
    }


class SafeBrowsingClient(ProviderClient):
    name = "safe_browsing"
    display_name = "Google Safe Browsing"

    def __init__(self, api_key: str, http: ProviderHttp, timeout_s: float = 12.0, api_url: str = API_URL):
        super().__init__(http, timeout_s)
        self.api_key = api_key
        self.api_url = api_url

    def _lookup(self, url: str, deadline: float) -> ProviderOutcome:
        resp = self.http.request(
            "POST",
            self.api_url,
            deadline=deadline,
            params={"key": self.api_key},
            json=build_payload(url),
        )
        ensure_ok(resp)
        body = json_body(resp)

        matches = body.get("matches") or []
        if not isinstance(matches, list):
            raise MalformedResponse("matches is not a list")
        if not matches:
            return self.outcome(OutcomeState.CLEAN, "No threats detected.", {"matches": []})

        threat_types = sorted(
            {
                str(match.get("threatType"))
                for match in matches
                if isinstance(match, dict) and match.get("threatType")
            }
        )
        listed = ", ".join(threat_types) if threat_types else "unspecified threat"
        return self.outcome(
            OutcomeState.MATCHED_THREAT,
            f"Threat detected ({listed}).",
            {"matches": matches},
        )
