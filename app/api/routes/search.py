from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from loguru import logger

from app.agents.orchestrator import SearchOrchestrator
from app.api.deps import get_orchestrator, get_team_context
from app.models.schemas import ErrorResponse, SearchRequest, SearchResponse
from app.research_core.models.errors import ScrapeJobTimeoutError, SearchTimeoutError
from app.research_core.models.interfaces import TeamContext

router = APIRouter(prefix="/api/v2", tags=["search"])

ZDR_UNSUPPORTED = (
    "Your team has zero data retention enabled. This is not supported on search. "
    "Please contact support to unblock this feature."
)
UNEXPECTED_ERROR = "An unexpected error occurred. Please contact support if the problem persists."


@router.post("/search", response_model=SearchResponse, response_model_exclude_none=True)
async def search(
    request: SearchRequest,
    team: TeamContext = Depends(get_team_context),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
):
    """Run the iterative search loop and return fused, enriched results."""
    if team.flags.force_zdr:
        raise HTTPException(status_code=400, detail=ZDR_UNSUPPORTED)

    try:
        outcome = await orchestrator.run(request, team)
    except (SearchTimeoutError, ScrapeJobTimeoutError):
        raise
    except Exception as exc:
        logger.error(f"Unhandled error occurred in search: {exc}")
        error = ErrorResponse(error=UNEXPECTED_ERROR, code=getattr(exc, "code", None))
        return JSONResponse(status_code=500, content=error.model_dump(exclude_none=True))

    return outcome.to_response()
