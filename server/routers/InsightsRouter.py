from fastapi import APIRouter, Depends, Request

from server.core.InsightsService import TrendReport
from server.dependencies.auth import get_principal, require_admin
from server.models.requests import FeedbackRequest
from server.models.responses import FeedbackResponse
from shared.models.access import Principal

router = APIRouter(tags=["insights"])


@router.post("/feedback")
async def submit_feedback(request: Request, body: FeedbackRequest, principal: Principal = Depends(get_principal)) -> FeedbackResponse:
    feedback_id = await request.app.state.insights_service.record_feedback(
        principal, body.query, body.response, body.feedback, body.sources,
    )
    return FeedbackResponse(message="Feedback received successfully.", id=feedback_id)


@router.get("/trends/analyze")
async def analyze_trends(request: Request, _: Principal = Depends(require_admin)) -> TrendReport:
    """Topic trends in user questions, last 7 days against the 7 days before."""
    return await request.app.state.insights_service.analyze_trends()
