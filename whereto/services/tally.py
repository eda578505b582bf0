"""Vote tally and winner selection

Ties are broken by *earliest-reached lead*: casts are replayed in ``cast_at``
order (row id as secondary key) and, among the venues sharing the top count,
the one whose final vote arrived first wins. If two leaders reached the top
count at the very same instant the smaller venue id wins, so the result never
depends on dict iteration order.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple


@dataclass
class VoteTally:
    counts: Dict[str, int] = field(default_factory=dict)
    # cast_at of the vote that brought each venue to its current count
    reached_at: Dict[str, datetime] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def is_empty(self) -> bool:
        return not self.counts

    def _rank_key(self, venue_id: str):
        return (-self.counts[venue_id], self.reached_at[venue_id], venue_id)

    def ranked(self) -> List[Tuple[str, int]]:
        """Venues by count desc, tie-break order applied"""
        return [(v, self.counts[v]) for v in sorted(self.counts, key=self._rank_key)]


def tally(casts: Iterable[Any]) -> VoteTally:
    """Count casts per venue.

    ``casts`` are VoteCast rows (or anything with ``venue_id``, ``cast_at`` and
    ``id``). One row per user per round is guaranteed by the database.
    """
    result = VoteTally()
    ordered = sorted(casts, key=lambda c: (c.cast_at, c.id or 0))
    for cast in ordered:
        result.counts[cast.venue_id] = result.counts.get(cast.venue_id, 0) + 1
        result.reached_at[cast.venue_id] = cast.cast_at
    return result


def pick_winner(result: VoteTally) -> Optional[Tuple[str, int]]:
    """(venue_id, vote_count) of the winner, or None for an empty tally"""
    if result.is_empty():
        return None
    return result.ranked()[0]
