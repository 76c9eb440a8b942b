from __future__ import annotations

from dataclasses import asdict

from app.research_core.models.interfaces import RequestSummary
from app.services import logger as log_service


class LoggingRequestLogger:
    """Writes the per-request summary to the application log."""

    def __init__(self, *, include_docs: bool = False):
        self.include_docs = include_docs

    async def record(self, summary: RequestSummary) -> None:
        payload = asdict(summary)
        if not self.include_docs:
            payload.pop("docs", None)
        log_service.log_event(
            event_type="request_log",
            message=f"Search request {summary.request_id} finished",
            **payload,
        )
