# qrsec/__init__.py

"""
QrSec link-check backend.

Exposes the FastAPI app in ``qrsec.main`` and, for embedding:

    LinkCheckService.check(url) -> Verdict
"""

from qrsec.service import LinkCheckService
from qrsec.verdict import OutcomeState, ProviderOutcome, Status, Verdict

__all__ = ["LinkCheckService", "OutcomeState", "ProviderOutcome", "Status", "Verdict"]
