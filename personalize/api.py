"""
Personalization API Routes

Endpoints for the learning model, calibrated estimates and adaptive delivery:
- Record behavioural events and rebuild the user model
- Read the model projection and learning insights
- Calibrated estimates, batch totals, estimate advice and tips
- Adapt suggestions; adapt, deliver and digest notifications
- Pending notifications: list, release due ones, mark shown or dismissed
- Notification frequency caps and limit status
- Explicit feedback, feedback history and implicit signals
- Delete everything learned about a user

The caller identifies the user with the X-User-Id header.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from personalize.engine import PersonalizationEngine
from personalize.errors import InvalidInput
from personalize.logging_config import bind_user, clear_context, get_logger

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================


def get_engine(request: Request) -> PersonalizationEngine:
    return request.app.state.engine


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    bind_user(x_user_id)
    return x_user_id


def _field(body: Any, key: str) -> Any:
    if not isinstance(body, dict) or key not in body:
        raise InvalidInput(f"'{key}' is required", [{"loc": [key], "msg": "field required"}])
    return body[key]


# =============================================================================
# Learning Endpoints
# =============================================================================


@router.post("/events")
async def record_event(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Record one behavioural event: {"type": ..., "data": {...}, "timestamp": ...}."""
    return engine.record_event(
        user_id, body.get("type", ""), body.get("data") or {}, body.get("timestamp")
    )


@router.post("/model/rebuild")
async def rebuild_model(
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Force a model rebuild from the event store."""
    result = engine.rebuild(user_id)
    if not result.get("success"):
        raise HTTPException(status_code=503, detail=result.get("error", "Model rebuild failed"))
    return result


@router.get("/model")
async def get_model(
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return engine.model_summary(user_id)


@router.get("/insights")
async def get_insights(
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return engine.get_learning_insights(user_id)


# =============================================================================
# Estimate Endpoints
# =============================================================================


@router.post("/estimate")
async def estimate(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Calibrated estimate for {"task": {...}}."""
    return engine.estimate(user_id, _field(body, "task"))


@router.post("/estimate/total")
async def estimate_total(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Total calibrated time for {"tasks": [...]}."""
    return engine.total_time(user_id, _field(body, "tasks"))


@router.post("/estimate/suggest")
async def suggest_estimate(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return engine.suggest_better_estimate(user_id, _field(body, "task"))


@router.get("/estimate/tips")
async def estimate_tips(
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return {"tips": engine.estimation_tips(user_id)}


# =============================================================================
# Suggestion and Notification Endpoints
# =============================================================================


@router.post("/suggestions/adapt")
async def adapt_suggestions(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Filter, re-time, restyle and rank {"suggestions": [...]}."""
    return {"suggestions": engine.adapt_suggestions(user_id, _field(body, "suggestions"))}


@router.post("/notifications/adapt")
async def adapt_notification(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return engine.adapt_notification(user_id, _field(body, "notification"))


@router.post("/notifications/deliver")
async def deliver_notification(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Adapt a notification, then send it, queue it or skip it."""
    return engine.deliver_notification(user_id, _field(body, "notification"))


@router.post("/notifications/digest")
async def notification_digest(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return engine.notification_digest(user_id, _field(body, "notifications"))


@router.get("/notifications/frequency")
async def notification_frequency(
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return engine.optimal_frequency(user_id)


@router.get("/notifications/limits")
async def notification_limits(
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return engine.has_reached_limit(user_id)


@router.get("/notifications/pending")
async def pending_notifications(
    due_only: bool = Query(False),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Queued notifications; due_only=true limits them to those whose time has come."""
    return {"notifications": engine.pending_notifications(user_id, due_only=due_only)}


@router.post("/notifications/release")
async def release_notifications(
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Deliver due queued notifications through the frequency caps."""
    return engine.release_due_notifications(user_id)


@router.post("/notifications/{notification_id}/{outcome}")
async def mark_notification(
    notification_id: str,
    outcome: str,
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Mark a queued notification as shown or dismissed."""
    result = engine.mark_notification(user_id, notification_id, outcome)
    if not result["success"]:
        raise HTTPException(status_code=404, detail="Notification not found")
    return result


# =============================================================================
# Feedback Endpoints
# =============================================================================


@router.post("/feedback")
async def submit_feedback(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Explicit feedback of type suggestion, prediction, preference_correction or general."""
    return engine.submit_feedback(user_id, body)


@router.get("/feedback")
async def feedback_history(
    feedback_type: str | None = Query(None, alias="type"),
    days: int = Query(30, ge=1, le=365),
    limit: int = Query(100, ge=1, le=1000),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return {"feedback": engine.feedback_history(user_id, feedback_type, days=days, limit=limit)}


@router.get("/feedback/implicit")
async def implicit_feedback(
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Preference signals read off behaviour the user never stated."""
    return {"signals": engine.implicit_feedback(user_id, days=days)}


# =============================================================================
# Data Management
# =============================================================================


@router.delete("/data")
async def clear_data(
    user_id: str = Depends(get_user_id),
    engine: PersonalizationEngine = Depends(get_engine),
):
    """Delete everything learned about the user."""
    return engine.clear_learning_data(user_id)


# =============================================================================
# Application
# =============================================================================


def create_app(engine: PersonalizationEngine | None = None) -> FastAPI:
    app = FastAPI(
        title="Personalization Engine API",
        description="Adaptive estimates, suggestions and notifications learned from user behaviour",
        version="0.1.0",
    )
    app.state.engine = engine or PersonalizationEngine()

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput):
        logger.info("invalid_input", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "details": jsonable_errors(exc)},
        )

    @app.middleware("http")
    async def clear_log_context(request: Request, call_next):
        clear_context()
        return await call_next(request)

    app.include_router(router, prefix="/api/learning", tags=["learning"])
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
