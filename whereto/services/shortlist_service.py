"""Shortlist generator: meeting point, candidate search and scoring"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from whereto.config import settings
from whereto.db import Participant, Plan
from whereto.errors import InvalidStateError
from whereto.geo import Point, centroid, haversine_distance
from whereto.logger import get_logger
from whereto.models import MeetingPoint, ParticipantPreferences, ScoreBreakdown, Venue
from whereto.services.catalog_service import CatalogGateway

# Logger
logger = get_logger("shortlist")

MIDPOINT_AREA = "midpoint"
CITY_CENTER_AREA = "city-center"

# Score weights
DISTANCE_WEIGHT = 0.3
RATING_WEIGHT = 0.4
PREFERENCE_WEIGHT = 0.2
PARTNER_WEIGHT = 0.1

PARTNER_BONUS = 10.0
BASE_PREFERENCE_SCORE = 50.0


@dataclass
class ScoredVenue:
    venue: Venue
    score: ScoreBreakdown


def _preferences(participant: Participant) -> Optional[ParticipantPreferences]:
    if not participant.preferences:
        return None
    return ParticipantPreferences.model_validate(participant.preferences)


class ShortlistService:
    """Turns a plan and its participants into a ranked venue shortlist"""

    def __init__(self, catalog: CatalogGateway):
        self.catalog = catalog

    def meeting_point(self, plan: Plan, participants: Sequence[Participant]) -> MeetingPoint:
        if plan.location_lat is not None and plan.location_lng is not None:
            return MeetingPoint(lat=plan.location_lat, lng=plan.location_lng, source="plan")

        if plan.area == MIDPOINT_AREA:
            located = [
                (p.location_lat, p.location_lng)
                for p in participants
                if p.location_lat is not None and p.location_lng is not None
            ]
            if len(located) >= 2:
                mid = centroid(located)
                return MeetingPoint(lat=mid.lat, lng=mid.lng, source="midpoint")

        if plan.city_id:
            center = self.catalog.city_center(plan.city_id)
            if center is not None:
                return MeetingPoint(lat=center.lat, lng=center.lng, source="city")

        return MeetingPoint(
            lat=settings.default_center_lat,
            lng=settings.default_center_lng,
            source="default",
        )

    @staticmethod
    def search_radius(plan: Plan) -> int:
        if plan.area == CITY_CENTER_AREA:
            return settings.city_center_radius_m
        return settings.default_radius_m

    @staticmethod
    def preference_score(venue: Venue, plan: Plan, participants: Sequence[Participant]) -> float:
        categories = set(venue.categories)
        score = BASE_PREFERENCE_SCORE

        if plan.format and plan.format in categories:
            score += 20

        for participant in participants:
            prefs = _preferences(participant)
            if prefs is None:
                continue
            if prefs.format and prefs.format in categories:
                score += 5
            if prefs.budget and prefs.budget == plan.budget:
                score += 3
            score += 2 * len(categories.intersection(prefs.cuisine))

        return min(100.0, score)

    def score_venue(
        self,
        venue: Venue,
        meeting_point: MeetingPoint,
        plan: Plan,
        participants: Sequence[Participant],
    ) -> ScoreBreakdown:
        if venue.lat is None or venue.lng is None:
            return ScoreBreakdown()

        distance = haversine_distance(Point(meeting_point.lat, meeting_point.lng), Point(venue.lat, venue.lng))
        distance_score = max(0.0, 100 - distance / 50)  # 0 beyond 5 km
        rating_score = venue.rating * 20 if venue.rating else 0.0
        preference_score = self.preference_score(venue, plan, participants)
        partner_bonus = PARTNER_BONUS if venue.partner_active else 0.0

        total = (
            distance_score * DISTANCE_WEIGHT
            + rating_score * RATING_WEIGHT
            + preference_score * PREFERENCE_WEIGHT
            + partner_bonus * PARTNER_WEIGHT
        )
        return ScoreBreakdown(
            distance_m=distance,
            distance_score=distance_score,
            rating_score=rating_score,
            preference_score=preference_score,
            partner_bonus=partner_bonus,
            total_score=total,
        )

    def generate_shortlist(self, plan: Plan, participants: Sequence[Participant]):
        """Return (ranked venues, meeting point) for the plan"""
        if not participants:
            raise InvalidStateError("Cannot build a shortlist for a plan without participants")

        meeting_point = self.meeting_point(plan, participants)
        radius = self.search_radius(plan)
        candidates = self.catalog.search(
            center=Point(meeting_point.lat, meeting_point.lng),
            radius_m=radius,
            category=plan.format,
            min_rating=settings.min_rating,
            limit=settings.candidate_limit,
        )

        scored: List[ScoredVenue] = [
            ScoredVenue(venue=v, score=self.score_venue(v, meeting_point, plan, participants))
            for v in candidates
        ]
        # stable: equal scores keep catalog order
        scored.sort(key=lambda s: s.score.total_score, reverse=True)
        top = scored[: settings.shortlist_size]

        logger.bind(decision=True).info(
            f"Shortlist for plan {plan.id}: {len(candidates)} candidates within {radius}m of "
            f"({meeting_point.lat:.5f}, {meeting_point.lng:.5f}) [{meeting_point.source}] -> "
            + ", ".join(f"{s.venue.id}={s.score.total_score:.1f}" for s in top)
        )
        return top, meeting_point
