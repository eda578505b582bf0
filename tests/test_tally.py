from datetime import datetime, timedelta
from types import SimpleNamespace

from whereto.services.tally import pick_winner, tally

T0 = datetime(2026, 10, 19, 18, 0, 0)


def casts(*venue_ids, start=T0):
    return [
        SimpleNamespace(id=i + 1, venue_id=v, cast_at=start + timedelta(seconds=i))
        for i, v in enumerate(venue_ids)
    ]


def test_empty_tally_has_no_winner():
    result = tally([])
    assert result.is_empty()
    assert pick_winner(result) is None


def test_strict_maximum_wins():
    result = tally(casts("b", "a", "b", "c", "b"))
    assert result.counts == {"b": 3, "a": 1, "c": 1}
    assert pick_winner(result) == ("b", 3)


def test_tie_goes_to_earliest_reached_lead():
    # A reaches 3 at t+4, B reaches 3 at t+5
    result = tally(casts("a", "b", "a", "b", "a", "b", "c"))
    assert result.counts == {"a": 3, "b": 3, "c": 1}
    assert pick_winner(result) == ("a", 3)


def test_tie_break_ignores_input_order():
    rows = casts("b", "a", "b", "a", "b", "a", "c")
    assert pick_winner(tally(rows)) == ("b", 3)
    assert pick_winner(tally(list(reversed(rows)))) == ("b", 3)


def test_same_timestamp_falls_back_to_venue_id():
    # row id orders the replay but never decides the winner
    rows = [
        SimpleNamespace(id=1, venue_id="z", cast_at=T0),
        SimpleNamespace(id=2, venue_id="y", cast_at=T0),
    ]
    assert pick_winner(tally(rows)) == ("y", 1)
    assert tally(rows).ranked() == [("y", 1), ("z", 1)]


def test_ranked_orders_by_count_then_tie_break():
    result = tally(casts("c", "a", "b", "a", "b"))
    assert result.ranked() == [("a", 2), ("b", 2), ("c", 1)]
    assert result.total == 5
