# qrsec/providers/__init__.py

"""
Reputation provider adapters.

Exposes:
    build_providers(settings) -> list[ProviderClient]

Providers come back in the configured priority order; a provider without an
API key is left out.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from qrsec.providers.base import ProviderClient
from qrsec.providers.http_client import ProviderHttp
from qrsec.providers.safe_browsing import SafeBrowsingClient
from qrsec.providers.virustotal import VirusTotalClient
from qrsec.settings import Settings

logger = logging.getLogger("qrsec.providers")


def _virustotal(settings: Settings, http: ProviderHttp) -> Optional[ProviderClient]:
    if not settings.virustotal_api_key:
        return None
    return VirusTotalClient(
        settings.virustotal_api_key,
        http,
        timeout_s=settings.provider_timeout_s,
        poll_attempts=settings.vt_poll_attempts,
        poll_interval_s=settings.vt_poll_interval_s,
    )


def _safe_browsing(settings: Settings, http: ProviderHttp) -> Optional[ProviderClient]:
    if not settings.safe_browsing_api_key:
        return None
    return SafeBrowsingClient(
        settings.safe_browsing_api_key,
        http,
        timeout_s=settings.provider_timeout_s,
    )


FACTORIES: Dict[str, Callable[[Settings, ProviderHttp], Optional[ProviderClient]]] = {
    VirusTotalClient.name: _virustotal,
    SafeBrowsingClient.name: _safe_browsing,
}


def build_providers(settings: Settings) -> List[ProviderClient]:
    providers: List[ProviderClient] = []
    for name in settings.provider_priority:
        factory = FACTORIES.get(name)
        if factory is None:
            logger.warning("unknown provider %r in PROVIDER_PRIORITY, skipped", name)
            continue
        http = ProviderHttp(retries=settings.provider_max_retries)
        client = factory(settings, http)
        if client is not None:
            providers.append(client)
    return providers


__all__ = [
    "ProviderClient",
    "ProviderHttp",
    "SafeBrowsingClient",
    "VirusTotalClient",
    "build_providers",
]
