"""Data models"""

from datetime import date as Date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from whereto.config import settings


class PlanStatus(str, Enum):
    """Plan status"""
    OPEN = "open"
    VOTING = "voting"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class VoteStatus(str, Enum):
    """Voting round status"""
    OPEN = "open"
    CLOSED = "closed"


class Location(BaseModel):
    """A lat/lng pair"""
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ParticipantPreferences(BaseModel):
    """Participant preferences (version 1)"""
    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    format: Optional[str] = None
    budget: Optional[str] = None
    cuisine: List[str] = Field(default_factory=list)
    alcohol: Optional[Literal["yes", "no", "neutral"]] = None
    quiet: Optional[bool] = None
    outdoor: Optional[bool] = None
    kids_friendly: Optional[bool] = None

    @field_validator("cuisine", mode="before")
    @classmethod
    def split_cuisine(cls, value: Any) -> Any:
        # the bot sends "pizza, sushi"; the mini-app sends a list
        if value is None:
            return []
        if isinstance(value, str):
            return [c.strip() for c in value.split(",") if c.strip()]
        return value


# Catalog


class VenueOverrides(BaseModel):
    """Display corrections for a venue"""
    name: Optional[str] = None
    address: Optional[str] = None
    hours: Optional[Dict[str, Any]] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    categories: Optional[List[str]] = None
    hidden: bool = False


class Venue(BaseModel):
    """Venue as returned by the catalog gateway"""
    id: str
    city_id: Optional[str] = None
    name: str
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    categories: List[str] = Field(default_factory=list)
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    photo_refs: List[str] = Field(default_factory=list)
    hours: Optional[Dict[str, Any]] = None
    status: str = "active"
    partner_active: bool = False
    overrides: Optional[VenueOverrides] = None

    @field_validator("categories", "photo_refs", mode="before")
    @classmethod
    def none_to_list(cls, value: Any) -> Any:
        return value or []


class VenueView(BaseModel):
    """Venue with display overrides applied"""
    id: str
    name: str
    address: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    categories: List[str] = Field(default_factory=list)
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    photo_refs: List[str] = Field(default_factory=list)
    hours: Optional[Dict[str, Any]] = None
    partner: bool = False


# Shortlist


class MeetingPoint(BaseModel):
    lat: float
    lng: float
    source: Literal["plan", "midpoint", "city", "default"] = "default"


class ScoreBreakdown(BaseModel):
    distance_m: Optional[float] = None
    distance_score: float = 0.0
    rating_score: float = 0.0
    preference_score: float = 0.0
    partner_bonus: float = 0.0
    total_score: float = 0.0


class ShortlistItem(BaseModel):
    venue_id: str
    venue: Optional[VenueView] = None
    score: ScoreBreakdown


class ShortlistResult(BaseModel):
    venues: List[ShortlistItem]
    meeting_point: MeetingPoint


# Plans, participants, rounds


class ParticipantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str
    user_id: str
    preferences: Optional[ParticipantPreferences] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    joined_at: datetime


class VoteRoundOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str
    status: VoteStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    winner_venue_id: Optional[str] = None


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    chat_id: str
    initiator_id: str
    date: Date
    time: str
    area: Optional[str] = None
    city_id: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    budget: Optional[str] = None
    format: Optional[str] = None
    status: PlanStatus
    voting_ends_at: Optional[datetime] = None
    winning_venue_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class VoteResult(BaseModel):
    venue_id: str
    vote_count: int
    venue: Optional[VenueView] = None


class Winner(BaseModel):
    venue_id: str
    vote_count: int
    venue: Optional[VenueView] = None


class PlanDetails(PlanOut):
    participants: List[ParticipantOut] = Field(default_factory=list)
    rounds: List[VoteRoundOut] = Field(default_factory=list)
    results: List[VoteResult] = Field(default_factory=list)
    winning_venue: Optional[VenueView] = None


class ClosePlanResult(BaseModel):
    plan: PlanOut
    winner: Winner


class StartVotingResult(BaseModel):
    vote: VoteRoundOut
    options: List[ShortlistItem]


class ExpirySweepResult(BaseModel):
    closed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)


# API requests


class CreatePlanRequest(BaseModel):
    """Create plan request"""
    chat_id: Union[str, int]
    initiator_id: str = Field(min_length=1)
    date: Date
    time: str = Field(pattern=r"^([01][0-9]|2[0-3]):[0-5][0-9]$")
    area: Optional[str] = None
    city_id: Optional[str] = None
    location: Optional[Location] = None
    budget: Optional[str] = None
    format: Optional[str] = None

    @field_validator("chat_id")
    @classmethod
    def chat_id_to_str(cls, value: Union[str, int]) -> str:
        return str(value)


class JoinPlanRequest(BaseModel):
    """Join plan request"""
    user_id: str = Field(min_length=1)
    preferences: Optional[ParticipantPreferences] = None
    location: Optional[Location] = None


class StartVotingRequest(BaseModel):
    duration_hours: Optional[float] = Field(default=None, gt=0, le=settings.max_voting_hours)


class CastVoteRequest(BaseModel):
    """Cast/remove vote request"""
    user_id: str = Field(min_length=1)
    venue_id: str = Field(min_length=1)


class ClosePlanRequest(BaseModel):
    requester_id: str = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def accept_initiator_id(cls, data: Any) -> Any:
        # older bot builds send "initiator_id"
        if isinstance(data, dict) and "requester_id" not in data and "initiator_id" in data:
            data = {**data, "requester_id": data["initiator_id"]}
        return data
