"""Plan lifecycle manager

Owns the plan state machine::

    open --start_voting--> voting --close_plan--> closed
      \\                      |
       +--cancel_plan--------+--> cancelled

Every transition goes through this service. Uniqueness of participants,
vote casts and the single open round is enforced by database constraints;
the upserts here insert under a SAVEPOINT and fall back to an update when a
concurrent request won the insert.
"""

from datetime import date as Date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whereto.config import settings
from whereto.db import Participant, Plan, Vote, VoteCast, utcnow
from whereto.errors import ForbiddenError, InvalidStateError, NotFoundError
from whereto.logger import get_logger
from whereto.models import (
    ExpirySweepResult,
    Location,
    ParticipantPreferences,
    PlanDetails,
    PlanStatus,
    ShortlistResult,
    VoteResult,
    VoteStatus,
    Winner,
)
from whereto.services.catalog_service import CatalogGateway
from whereto.services.read_model import ReadModelAssembler
from whereto.services.shortlist_service import ShortlistService
from whereto.services.tally import VoteTally, pick_winner, tally

# Logger
logger = get_logger("plan_service")

JOINABLE = (PlanStatus.OPEN.value, PlanStatus.VOTING.value)


class PlanService:
    """Plan / participant / vote state machine"""

    def __init__(
        self,
        db: Session,
        catalog: CatalogGateway,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.catalog = catalog
        self.clock = clock
        self.shortlist_service = ShortlistService(catalog)
        self.read_model = ReadModelAssembler(catalog)

    # ----- lookups -----

    def _get_plan(self, plan_id: str) -> Plan:
        plan = self.db.get(Plan, plan_id)
        if plan is None:
            raise NotFoundError(f"Plan with id {plan_id} not found")
        return plan

    def _participant(self, plan_id: str, user_id: str) -> Optional[Participant]:
        return (
            self.db.query(Participant)
            .filter(Participant.plan_id == plan_id, Participant.user_id == user_id)
            .first()
        )

    def _open_round(self, plan_id: str) -> Optional[Vote]:
        return (
            self.db.query(Vote)
            .filter(Vote.plan_id == plan_id, Vote.status == VoteStatus.OPEN.value)
            .first()
        )

    def _current_round(self, plan_id: str) -> Optional[Vote]:
        """Open round, else the most recent one"""
        return self._open_round(plan_id) or (
            self.db.query(Vote)
            .filter(Vote.plan_id == plan_id)
            .order_by(Vote.started_at.desc())
            .first()
        )

    def _user_cast(self, vote_id: str, user_id: str) -> Optional[VoteCast]:
        return (
            self.db.query(VoteCast)
            .filter(VoteCast.vote_id == vote_id, VoteCast.user_id == user_id)
            .first()
        )

    def _tally(self, vote: Vote) -> VoteTally:
        casts = self.db.query(VoteCast).filter(VoteCast.vote_id == vote.id).all()
        return tally(casts)

    # ----- creation / joining -----

    def create_plan(
        self,
        chat_id: str,
        initiator_id: str,
        date: Date,
        time: str,
        area: Optional[str] = None,
        city_id: Optional[str] = None,
        location: Optional[Location] = None,
        budget: Optional[str] = None,
        format: Optional[str] = None,
    ) -> Plan:
        now = self.clock()
        plan = Plan(
            chat_id=str(chat_id),
            initiator_id=initiator_id,
            date=date,
            time=time,
            area=area,
            city_id=city_id,
            location_lat=location.lat if location else None,
            location_lng=location.lng if location else None,
            budget=budget,
            format=format,
            status=PlanStatus.OPEN.value,
            created_at=now,
            updated_at=now,
        )
        self.db.add(plan)
        self.db.flush()

        # initiator is always the first participant
        self.db.add(Participant(plan_id=plan.id, user_id=initiator_id, joined_at=now))
        self.db.commit()
        self.db.refresh(plan)

        logger.info(f"Plan {plan.id} created by {initiator_id} (chat {plan.chat_id}, {date} {time})")
        return plan

    def join_plan(
        self,
        plan_id: str,
        user_id: str,
        preferences: Optional[ParticipantPreferences] = None,
        location: Optional[Location] = None,
    ) -> Participant:
        plan = self._get_plan(plan_id)
        if plan.status not in JOINABLE:
            raise InvalidStateError(f"Cannot join plan with status {plan.status}")

        fields: Dict[str, Any] = {
            "preferences": preferences.model_dump() if preferences else None,
            "location_lat": location.lat if location else None,
            "location_lng": location.lng if location else None,
        }
        participant = self._upsert_participant(plan_id, user_id, fields)
        self.db.commit()

        logger.info(f"User {user_id} joined plan {plan_id}")
        return participant

    def _upsert_participant(self, plan_id: str, user_id: str, fields: Dict[str, Any]) -> Participant:
        participant = self._participant(plan_id, user_id)
        if participant is None:
            try:
                with self.db.begin_nested():
                    participant = Participant(plan_id=plan_id, user_id=user_id, joined_at=self.clock(), **fields)
                    self.db.add(participant)
                return participant
            except IntegrityError:
                # a concurrent join inserted the row first
                participant = self._participant(plan_id, user_id)
        for key, value in fields.items():
            setattr(participant, key, value)
        return participant

    # ----- shortlist / voting -----

    def get_shortlist(self, plan_id: str) -> ShortlistResult:
        plan = self._get_plan(plan_id)
        scored, meeting_point = self.shortlist_service.generate_shortlist(plan, plan.participants)
        return ShortlistResult(
            venues=self.read_model.shortlist_items(scored),
            meeting_point=meeting_point,
        )

    def start_voting(self, plan_id: str, duration_hours: Optional[float] = None) -> Tuple[Vote, ShortlistResult]:
        plan = self._get_plan(plan_id)
        if plan.status != PlanStatus.OPEN.value:
            raise InvalidStateError(f"Cannot start voting for plan with status {plan.status}")

        hours = duration_hours if duration_hours is not None else settings.default_voting_hours
        if hours <= 0 or hours > settings.max_voting_hours:
            raise ValueError(f"duration_hours must be in (0, {settings.max_voting_hours}]")

        shortlist = self.get_shortlist(plan_id)

        now = self.clock()
        vote = Vote(plan_id=plan_id, status=VoteStatus.OPEN.value, started_at=now)
        try:
            with self.db.begin_nested():
                self.db.add(vote)
        except IntegrityError:
            raise InvalidStateError("Voting has already been started for this plan")

        plan.status = PlanStatus.VOTING.value
        plan.voting_ends_at = now + timedelta(hours=hours)
        plan.updated_at = now
        self.db.commit()
        self.db.refresh(vote)

        logger.info(f"Voting started for plan {plan_id} (round {vote.id}, ends {plan.voting_ends_at})")
        return vote, shortlist

    def _voting_context(self, plan_id: str, user_id: str) -> Vote:
        """Checks shared by cast/remove; returns the open round"""
        plan = self._get_plan(plan_id)
        if plan.status != PlanStatus.VOTING.value:
            raise InvalidStateError(f"Cannot vote for plan with status {plan.status}")
        if self._participant(plan_id, user_id) is None:
            raise ForbiddenError("User must join plan before voting")
        vote = self._open_round(plan_id)
        if vote is None:
            raise InvalidStateError("No active vote found for this plan")
        return vote

    def cast_vote(self, plan_id: str, user_id: str, venue_id: str) -> VoteCast:
        vote = self._voting_context(plan_id, user_id)
        if self.catalog.get_by_id(venue_id) is None:
            raise NotFoundError(f"Venue with id {venue_id} not found")

        now = self.clock()
        cast = self._user_cast(vote.id, user_id)
        if cast is None:
            try:
                with self.db.begin_nested():
                    cast = VoteCast(vote_id=vote.id, plan_id=plan_id, user_id=user_id, venue_id=venue_id, cast_at=now)
                    self.db.add(cast)
            except IntegrityError:
                # concurrent first vote from the same user; last write wins
                cast = self._user_cast(vote.id, user_id)
                cast.venue_id = venue_id
                cast.cast_at = now
        elif cast.venue_id != venue_id:
            cast.venue_id = venue_id
            cast.cast_at = now
        self.db.commit()

        logger.info(f"User {user_id} voted for {venue_id} in plan {plan_id}")
        return cast

    def remove_vote(self, plan_id: str, user_id: str, venue_id: str) -> bool:
        """Retract the user's vote if it is for ``venue_id``; True if a row was removed"""
        vote = self._voting_context(plan_id, user_id)
        cast = self._user_cast(vote.id, user_id)
        if cast is None or cast.venue_id != venue_id:
            return False
        self.db.delete(cast)
        self.db.commit()
        logger.info(f"User {user_id} removed vote for {venue_id} in plan {plan_id}")
        return True

    def get_user_votes(self, plan_id: str, user_id: str) -> List[str]:
        self._get_plan(plan_id)
        vote = self._current_round(plan_id)
        if vote is None:
            return []
        cast = self._user_cast(vote.id, user_id)
        return [cast.venue_id] if cast else []

    def get_vote_results(self, plan_id: str) -> List[VoteResult]:
        self._get_plan(plan_id)
        vote = self._current_round(plan_id)
        if vote is None:
            return []
        return self.read_model.vote_results(self._tally(vote))

    # ----- closing -----

    def _close_round(self, plan: Plan, vote: Vote) -> Winner:
        """Tally ``vote`` and close both the round and the plan"""
        result = self._tally(vote)
        picked = pick_winner(result)
        if picked is None:
            raise InvalidStateError("No votes cast. Cannot close plan without votes.")
        winner_venue_id, vote_count = picked
        # resolve the view first; a catalog failure must leave the round open
        winner = Winner(
            venue_id=winner_venue_id,
            vote_count=vote_count,
            venue=self.read_model.venue_view(winner_venue_id),
        )

        now = self.clock()
        vote.status = VoteStatus.CLOSED.value
        vote.ended_at = now
        vote.winner_venue_id = winner_venue_id

        plan.status = PlanStatus.CLOSED.value
        plan.winning_venue_id = winner_venue_id
        plan.voting_ends_at = None
        plan.updated_at = now
        self.db.commit()
        self.db.refresh(plan)

        logger.bind(decision=True).info(
            f"Plan {plan.id} closed: winner {winner_venue_id} with {vote_count}/{result.total} votes "
            f"(ranking: {result.ranked()})"
        )
        return winner

    def close_plan(self, plan_id: str, requester_id: str) -> Tuple[Plan, Winner]:
        plan = self._get_plan(plan_id)
        if plan.initiator_id != requester_id:
            raise ForbiddenError("Only plan initiator can close the plan")
        if plan.status == PlanStatus.CLOSED.value:
            raise InvalidStateError("Plan is already closed")
        if plan.status == PlanStatus.CANCELLED.value:
            raise InvalidStateError("Plan is cancelled")

        vote = self._open_round(plan_id)
        if vote is None:
            raise InvalidStateError("No active vote found. Start voting first.")

        winner = self._close_round(plan, vote)
        return plan, winner

    def cancel_plan(self, plan_id: str, requester_id: str) -> Plan:
        plan = self._get_plan(plan_id)
        if plan.initiator_id != requester_id:
            raise ForbiddenError("Only plan initiator can cancel the plan")
        if plan.status not in JOINABLE:
            raise InvalidStateError(f"Cannot cancel plan with status {plan.status}")

        now = self.clock()
        vote = self._open_round(plan_id)
        if vote is not None:
            vote.status = VoteStatus.CLOSED.value
            vote.ended_at = now

        plan.status = PlanStatus.CANCELLED.value
        plan.voting_ends_at = None
        plan.updated_at = now
        self.db.commit()
        self.db.refresh(plan)

        logger.info(f"Plan {plan_id} cancelled by {requester_id}")
        return plan

    def expire_plan(self, plan_id: str, now: Optional[datetime] = None) -> Optional[Winner]:
        """Deadline trigger for one plan.

        Returns the winner when the plan was closed here, None when there was
        nothing to do (already closed/cancelled, deadline not reached, or no
        votes yet).
        """
        plan = self._get_plan(plan_id)
        now = now or self.clock()
        if plan.status != PlanStatus.VOTING.value:
            return None
        if plan.voting_ends_at is None or plan.voting_ends_at > now:
            return None

        vote = self._open_round(plan_id)
        if vote is None:
            return None
        try:
            return self._close_round(plan, vote)
        except InvalidStateError:
            logger.warning(f"Voting deadline passed for plan {plan_id} but no votes were cast")
            return None

    def close_expired_plans(self, now: Optional[datetime] = None) -> ExpirySweepResult:
        now = now or self.clock()
        due = (
            self.db.query(Plan.id)
            .filter(Plan.status == PlanStatus.VOTING.value, Plan.voting_ends_at <= now)
            .order_by(Plan.voting_ends_at)
            .all()
        )
        result = ExpirySweepResult()
        for (plan_id,) in due:
            if self.expire_plan(plan_id, now=now) is not None:
                result.closed.append(plan_id)
            else:
                result.skipped.append(plan_id)
        if due:
            logger.info(f"Expiry sweep: closed={len(result.closed)} skipped={len(result.skipped)}")
        return result

    # ----- reads -----

    def get_plan_details(self, plan_id: str) -> PlanDetails:
        plan = self._get_plan(plan_id)
        vote = self._current_round(plan_id)
        result = self._tally(vote) if vote else None
        return self.read_model.plan_details(plan, result)

    def list_chat_plans(self, chat_id: str) -> List[Plan]:
        return (
            self.db.query(Plan)
            .filter(Plan.chat_id == str(chat_id))
            .order_by(Plan.created_at.desc())
            .all()
        )
