"""FastAPI main application"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whereto import __version__
from whereto.config import settings
from whereto.db import get_db, init_db
from whereto.errors import UnavailableError, WheretoError
from whereto.logger import get_logger
from whereto.models import (
    CastVoteRequest,
    ClosePlanRequest,
    ClosePlanResult,
    CreatePlanRequest,
    JoinPlanRequest,
    PlanOut,
    StartVotingRequest,
    StartVotingResult,
    VoteRoundOut,
)
from whereto.services.catalog_service import build_catalog_gateway
from whereto.services.plan_service import PlanService

# Logger
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Creating database tables")
    init_db()
    logger.info(f"WhereTo API {__version__} ready (catalog backend: {settings.catalog_backend})")
    yield


app = FastAPI(
    title="WhereTo - group venue planning",
    description="Plans, venue shortlists, voting and winner selection for group meetups",
    version=__version__,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WheretoError)
async def wheretoerror_handler(request: Request, exc: WheretoError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.status_code}: {exc.detail}")
    else:
        logger.warning(f"{request.method} {request.url.path} - {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "kind": exc.kind, "detail": exc.detail},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error on {request.method} {request.url.path}: {str(exc)}", exc_info=True)
    return await wheretoerror_handler(request, UnavailableError("Database unavailable, retry later"))


def get_plan_service(db: Session = Depends(get_db)) -> PlanService:
    return PlanService(db, build_catalog_gateway(db))


@app.post("/api/plans", status_code=201)
def create_plan(request: CreatePlanRequest, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Create plan endpoint"""
    plan = service.create_plan(
        chat_id=request.chat_id,
        initiator_id=request.initiator_id,
        date=request.date,
        time=request.time,
        area=request.area,
        city_id=request.city_id,
        location=request.location,
        budget=request.budget,
        format=request.format,
    )
    return {"data": PlanOut.model_validate(plan)}


@app.post("/api/plans/close-expired")
def close_expired(service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Voting-deadline sweep; called by an external timer"""
    return {"data": service.close_expired_plans()}


@app.post("/api/plans/{plan_id}/join")
def join_plan(plan_id: str, request: JoinPlanRequest, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Join plan endpoint"""
    service.join_plan(plan_id, request.user_id, request.preferences, request.location)
    return {"data": {"joined": True}}


@app.get("/api/plans/{plan_id}/options")
def get_shortlist(plan_id: str, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Venue shortlist endpoint"""
    result = service.get_shortlist(plan_id)
    return {"data": result.venues, "meeting_point": result.meeting_point}


@app.post("/api/plans/{plan_id}/vote")
def start_voting(
    plan_id: str,
    request: Optional[StartVotingRequest] = None,
    service: PlanService = Depends(get_plan_service),
) -> Dict[str, Any]:
    """Start voting endpoint"""
    duration = request.duration_hours if request else None
    vote, shortlist = service.start_voting(plan_id, duration)
    return {"data": StartVotingResult(vote=VoteRoundOut.model_validate(vote), options=shortlist.venues)}


@app.post("/api/plans/{plan_id}/vote/cast")
def cast_vote(plan_id: str, request: CastVoteRequest, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Cast vote endpoint"""
    service.cast_vote(plan_id, request.user_id, request.venue_id)
    return {"data": {"voted": True}}


@app.delete("/api/plans/{plan_id}/vote/cast")
def remove_vote(plan_id: str, request: CastVoteRequest, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Remove vote endpoint"""
    removed = service.remove_vote(plan_id, request.user_id, request.venue_id)
    return {"data": {"removed": removed}}


@app.get("/api/plans/{plan_id}/vote/user/{user_id}")
def get_user_votes(plan_id: str, user_id: str, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """User's current votes endpoint"""
    return {"data": service.get_user_votes(plan_id, user_id)}


@app.get("/api/plans/{plan_id}/vote/results")
def get_vote_results(plan_id: str, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Vote results endpoint"""
    return {"data": service.get_vote_results(plan_id)}


@app.post("/api/plans/{plan_id}/close")
def close_plan(plan_id: str, request: ClosePlanRequest, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Close plan endpoint (initiator only)"""
    plan, winner = service.close_plan(plan_id, request.requester_id)
    return {"data": ClosePlanResult(plan=PlanOut.model_validate(plan), winner=winner)}


@app.post("/api/plans/{plan_id}/cancel")
def cancel_plan(plan_id: str, request: ClosePlanRequest, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Cancel plan endpoint (initiator only)"""
    plan = service.cancel_plan(plan_id, request.requester_id)
    return {"data": PlanOut.model_validate(plan)}


@app.get("/api/plans/{plan_id}")
def get_plan_details(plan_id: str, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Plan details endpoint"""
    return {"data": service.get_plan_details(plan_id)}


@app.get("/api/chats/{chat_id}/plans")
def list_chat_plans(chat_id: str, service: PlanService = Depends(get_plan_service)) -> Dict[str, Any]:
    """Plans of one chat, newest first"""
    return {"data": [PlanOut.model_validate(p) for p in service.list_chat_plans(chat_id)]}


@app.get("/api/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint"""
    return {"status": "healthy", "message": "WhereTo API is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "whereto.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
