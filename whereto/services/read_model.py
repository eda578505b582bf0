"""Read-model assembly: venue display views, vote results and plan details"""

from typing import Dict, List, Optional, Sequence

from whereto.db import Plan
from whereto.models import (
    ParticipantOut,
    PlanDetails,
    PlanOut,
    ShortlistItem,
    VoteResult,
    VoteRoundOut,
    VenueView,
)
from whereto.services.catalog_service import CatalogGateway
from whereto.services.tally import VoteTally


class ReadModelAssembler:
    """Merges venues with their display overrides for output"""

    def __init__(self, catalog: CatalogGateway):
        self.catalog = catalog
        self._views: Dict[str, Optional[VenueView]] = {}

    def venue_view(self, venue_id: str) -> Optional[VenueView]:
        # cached per assembler; one assembler lives for one request
        if venue_id not in self._views:
            venue = self.catalog.get_by_id(venue_id)
            self._views[venue_id] = self.catalog.apply_display_overrides(venue) if venue else None
        return self._views[venue_id]

    def shortlist_items(self, scored: Sequence) -> List[ShortlistItem]:
        items = []
        for s in scored:
            view = self.catalog.apply_display_overrides(s.venue)
            self._views[s.venue.id] = view
            items.append(ShortlistItem(venue_id=s.venue.id, venue=view, score=s.score))
        return items

    def vote_results(self, result: VoteTally) -> List[VoteResult]:
        return [
            VoteResult(venue_id=venue_id, vote_count=count, venue=self.venue_view(venue_id))
            for venue_id, count in result.ranked()
        ]

    def plan_details(self, plan: Plan, result: Optional[VoteTally] = None) -> PlanDetails:
        base = PlanOut.model_validate(plan).model_dump()
        return PlanDetails(
            **base,
            participants=[ParticipantOut.model_validate(p) for p in plan.participants],
            rounds=[VoteRoundOut.model_validate(v) for v in plan.votes],
            results=self.vote_results(result) if result else [],
            winning_venue=self.venue_view(plan.winning_venue_id) if plan.winning_venue_id else None,
        )
