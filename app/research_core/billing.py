from __future__ import annotations

from typing import Any

from app.research_core.models.interfaces import CostTracking, Document, TeamContext, TeamFlags
from app.services import logger as log_service


class FlatRateBilling:
    """Flat credits per successfully fetched document.

    The real credit formula belongs to the billing ledger; this default keeps
    the service usable without one.
    """

    def __init__(self, credits_per_result: int = 1):
        self.credits_per_result = max(int(credits_per_result), 0)

    def credits_for(
        self,
        options: dict[str, Any],
        context: TeamContext,
        document: Document,
        cost_tracking: CostTracking,
        flags: TeamFlags | None,
    ) -> int:
        if document.error:
            return 0
        return self.credits_per_result

    async def bill_team(self, team_id: str, credits: int) -> None:
        log_service.log_event(
            event_type="team_billed",
            message=f"Billed team {team_id} for {credits} credits",
            team_id=team_id,
            credits=credits,
        )
