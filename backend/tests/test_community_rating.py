from __future__ import annotations

import logging
from collections import defaultdict

import pytest
import sqlalchemy as sa

from app.models import CommunityRating, CommunityRatingEvent
from app.services.community_rating import (
    build_rating_changes,
    fetch_rating_snapshot,
    fetch_ratings_at,
    reconcile_community_rating_for_game,
    rollback_community_rating_for_game,
    RatingChange,
)
from app.services.elo import PlayerRatingInput, compute_community_rating_deltas
from app.services.rating_store import RatingStoreError
from tests.testkit import (
    add_player,
    at,
    count_events,
    get_rating,
    list_events,
    mark_no_show,
    new_id,
    remove_player,
    seed_game,
    seed_rating,
    set_game,
    set_score,
    snapshot_players,
)


def _sum_events(events: list[dict]) -> dict[str, tuple[float, int]]:
    out = defaultdict(lambda: [0.0, 0])
    for e in events:
        out[e["profile_id"]][0] += e["delta"]
        out[e["profile_id"]][1] += e["rated_games_delta"]
    return {pid: (v[0], v[1]) for pid, v in out.items()}


# build_rating_changes

def test_first_application_counts_every_new_player():
    changes = build_rating_changes({"a": 25.0, "b": -25.0}, {}, was_rated=False)
    assert changes == [RatingChange("a", 25.0, 1), RatingChange("b", -25.0, 1)]


def test_unrated_snapshot_ignores_stale_deltas():
    changes = build_rating_changes({"a": 25.0}, {"a": 40.0}, was_rated=False)
    assert changes == [RatingChange("a", 25.0, 1)]


def test_adjust_emits_only_differences():
    changes = build_rating_changes(
        {"same": 10.0, "moved": 12.5, "joined": 8.0},
        {"same": 10.0, "moved": 10.0, "left": -6.0},
        was_rated=True,
    )
    assert changes == [
        RatingChange("moved", 2.5, 0),
        RatingChange("joined", 8.0, 1),
        RatingChange("left", 6.0, -1),
    ]


# reconcile: apply

@pytest.mark.asyncio
async def test_first_reconcile_applies_fresh_ratings(db, store):
    game = await seed_game(db, team_a_score=3, team_b_score=1)

    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))

    for pid in game.team_a:
        assert await get_rating(db, game.community_id, pid) == (1525.0, 1)
    for pid in game.team_b:
        assert await get_rating(db, game.community_id, pid) == (1475.0, 1)

    events = await list_events(db, game.game_id)
    assert len(events) == 4
    assert {e["event_type"] for e in events} == {"apply"}
    assert {e["rated_games_delta"] for e in events} == {1}

    rating_row, player_rows = await fetch_rating_snapshot(store, game.game_id)
    assert rating_row["rated"] is True
    assert rating_row["invalidated_at"] is None
    assert rating_row["goal_diff"] == 2
    assert rating_row["team_a_id"] == game.team_a_id
    assert rating_row["team_b_id"] == game.team_b_id
    assert rating_row["team_a_rating"] == rating_row["team_b_rating"] == 1500.0
    assert {p["profile_id"] for p in player_rows} == set(game.roster)
    for p in player_rows:
        assert p["pre_rating"] == 1500.0
        assert p["pre_rated_games"] == 0
        assert p["k_used"] == 50
        assert p["delta"] == (25.0 if p["team_side"] == "A" else -25.0)


@pytest.mark.asyncio
async def test_apply_starts_from_live_ratings(db, store):
    community_id = new_id()
    a1, a2, b1, b2 = new_id(), new_id(), new_id(), new_id()
    await seed_rating(db, community_id, a1, 1620.0, 9)
    await seed_rating(db, community_id, a2, 1580.0, 4)
    await seed_rating(db, community_id, b1, 1490.0, 2)
    game = await seed_game(db, community_id=community_id, team_a=[a1, a2], team_b=[b1, b2], team_a_score=2, team_b_score=6)

    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))

    expected = compute_community_rating_deltas(
        [PlayerRatingInput(a1, 1620.0, 9), PlayerRatingInput(a2, 1580.0, 4)],
        [PlayerRatingInput(b1, 1490.0, 2), PlayerRatingInput(b2, 1500.0, 0)],
        -4,
    )
    by_id = {d.profile_id: d for d in expected.player_deltas}
    assert (await get_rating(db, community_id, a1))[0] == pytest.approx(1620.0 + by_id[a1].delta)
    assert await get_rating(db, community_id, a2) == (pytest.approx(1580.0 + by_id[a2].delta), 5)
    assert await get_rating(db, community_id, b1) == (pytest.approx(1490.0 + by_id[b1].delta), 3)
    assert by_id[b1].k_used == 50 and by_id[a1].k_used == 30

    players = await snapshot_players(db, game.game_id)
    assert players[a1]["pre_rating"] == 1620.0
    assert players[a1]["pre_rated_games"] == 9
    assert players[b2]["pre_rating"] == 1500.0


@pytest.mark.asyncio
async def test_ineligible_game_without_snapshot_is_a_no_op(db, store):
    game = await seed_game(db, result_status="pending")

    await reconcile_community_rating_for_game(store, game.game_id)

    rating_row, _ = await fetch_rating_snapshot(store, game.game_id)
    assert rating_row is None
    assert await count_events(db) == 0


@pytest.mark.asyncio
async def test_missing_game_is_a_no_op(db, store):
    await reconcile_community_rating_for_game(store, new_id())
    await rollback_community_rating_for_game(store, new_id())
    assert await count_events(db) == 0


# reconcile: idempotence

@pytest.mark.asyncio
async def test_reconcile_twice_writes_nothing_new(db, store):
    game = await seed_game(db, team_a_score=7, team_b_score=3)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))
    ratings_after_first = [await get_rating(db, game.community_id, pid) for pid in game.roster]
    events_after_first = await count_events(db)

    await reconcile_community_rating_for_game(store, game.game_id, now=at(5))

    assert await count_events(db) == events_after_first
    assert [await get_rating(db, game.community_id, pid) for pid in game.roster] == ratings_after_first


@pytest.mark.asyncio
async def test_unchanged_reconcile_logs_only_at_debug(db, store, caplog):
    game = await seed_game(db)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))
    caplog.set_level(logging.DEBUG, logger="app.services.community_rating")
    caplog.clear()

    await reconcile_community_rating_for_game(store, game.game_id, now=at(5))

    records = [r for r in caplog.records if r.name == "app.services.community_rating"]
    assert [(r.levelno, r.getMessage()) for r in records] == [(logging.DEBUG, "community rating unchanged")]


# rollback

@pytest.mark.regression
@pytest.mark.asyncio
async def test_rollback_restores_pre_apply_ratings(db, store):
    community_id = new_id()
    a1, a2, b1, b2 = new_id(), new_id(), new_id(), new_id()
    before = {a1: (1650.5, 12), a2: (1501.25, 2), b1: (1433.0, 7), b2: (1710.0, 30)}
    for pid, (rating, rated_games) in before.items():
        await seed_rating(db, community_id, pid, rating, rated_games)
    game = await seed_game(db, community_id=community_id, team_a=[a1, a2], team_b=[b1, b2], team_a_score=4, team_b_score=1)

    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))
    await rollback_community_rating_for_game(store, game.game_id, now=at(10))

    for pid, (rating, rated_games) in before.items():
        after = await get_rating(db, community_id, pid)
        assert after[0] == pytest.approx(rating)
        assert after[1] == rated_games

    rating_row, player_rows = await fetch_rating_snapshot(store, game.game_id)
    assert rating_row["rated"] is False
    assert rating_row["invalidated_at"] is not None
    assert len(player_rows) == 4
    assert all(p["delta"] == 0 for p in player_rows)

    rollback_events = [e for e in await list_events(db, game.game_id) if e["event_type"] == "rollback"]
    assert len(rollback_events) == 4
    assert {e["rated_games_delta"] for e in rollback_events} == {-1}


@pytest.mark.asyncio
async def test_rollback_is_idempotent(db, store):
    game = await seed_game(db)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))
    await rollback_community_rating_for_game(store, game.game_id, now=at(10))
    events = await count_events(db)

    await rollback_community_rating_for_game(store, game.game_id, now=at(20))

    assert await count_events(db) == events


@pytest.mark.regression
@pytest.mark.asyncio
async def test_cancelled_game_rolls_back_on_reconcile(db, store):
    game = await seed_game(db)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))

    await set_game(db, game, status="cancelled")
    await reconcile_community_rating_for_game(store, game.game_id, now=at(30))

    for pid in game.roster:
        assert await get_rating(db, game.community_id, pid) == (1500.0, 0)
    rating_row, _ = await fetch_rating_snapshot(store, game.game_id)
    assert rating_row["rated"] is False


@pytest.mark.regression
@pytest.mark.asyncio
async def test_no_show_rolls_back_a_rated_game(db, store):
    game = await seed_game(db, team_a_score=6, team_b_score=0)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))

    await mark_no_show(db, game, game.team_a[1])
    await reconcile_community_rating_for_game(store, game.game_id, now=at(30))

    for pid in game.roster:
        assert await get_rating(db, game.community_id, pid) == (1500.0, 0)
    totals = _sum_events(await list_events(db, game.game_id))
    assert all(total == (0.0, 0) for total in totals.values())


@pytest.mark.regression
@pytest.mark.asyncio
async def test_rolled_back_game_stays_untouched_while_ineligible(db, store):
    game = await seed_game(db)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))
    await set_score(db, game, 3, 1, status="disputed")
    await reconcile_community_rating_for_game(store, game.game_id, now=at(30))
    events = await count_events(db)
    ratings = [await get_rating(db, game.community_id, pid) for pid in game.roster]
    rating_row, _ = await fetch_rating_snapshot(store, game.game_id)

    await reconcile_community_rating_for_game(store, game.game_id, now=at(60))

    assert await count_events(db) == events == 8
    assert [await get_rating(db, game.community_id, pid) for pid in game.roster] == ratings
    after_row, _ = await fetch_rating_snapshot(store, game.game_id)
    assert after_row == rating_row


@pytest.mark.regression
@pytest.mark.asyncio
async def test_blowout_loss_floors_rating_at_zero(db, store):
    community_id = new_id()
    loser, winner = new_id(), new_id()
    await seed_rating(db, community_id, loser, 10.0, 5)
    await seed_rating(db, community_id, winner, 10.0, 5)
    game = await seed_game(db, community_id=community_id, team_a=[loser], team_b=[winner], team_a_score=0, team_b_score=9)

    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))

    # K 30, multiplier 1.5, even teams: -22.5 from 10.0 stops at the floor
    assert await get_rating(db, community_id, loser) == (0.0, 6)
    assert await get_rating(db, community_id, winner) == (32.5, 6)
    assert (await snapshot_players(db, game.game_id))[loser]["delta"] == -22.5

    await rollback_community_rating_for_game(store, game.game_id, now=at(30))

    # the floored write is not undone exactly: rollback adds back the full stored delta
    assert await get_rating(db, community_id, loser) == (22.5, 5)
    assert await get_rating(db, community_id, winner) == (10.0, 5)


# reconcile: adjust

@pytest.mark.regression
@pytest.mark.asyncio
async def test_score_edit_adjusts_by_the_difference(db, store):
    community_id = new_id()
    a1, a2, b1, b2 = new_id(), new_id(), new_id(), new_id()
    seeded = {a1: (1540.0, 6), a2: (1515.0, 3), b1: (1470.0, 11), b2: (1495.0, 1)}
    for pid, (rating, rated_games) in seeded.items():
        await seed_rating(db, community_id, pid, rating, rated_games)
    game = await seed_game(db, community_id=community_id, team_a=[a1, a2], team_b=[b1, b2], team_a_score=3, team_b_score=2)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))
    old_players = await snapshot_players(db, game.game_id)

    await set_score(db, game, 1, 7)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(60))

    def inputs(ids):
        return [PlayerRatingInput(pid, *seeded[pid]) for pid in ids]

    recomputed = compute_community_rating_deltas(inputs([a1, a2]), inputs([b1, b2]), -6)
    direct = {d.profile_id: d.delta for d in recomputed.player_deltas}

    events = await list_events(db, game.game_id)
    adjust_totals = _sum_events([e for e in events if e["event_type"] == "adjust"])
    assert set(adjust_totals) == set(seeded)
    for pid, (rating, rated_games) in seeded.items():
        assert adjust_totals[pid][0] == pytest.approx(direct[pid] - old_players[pid]["delta"])
        assert adjust_totals[pid][1] == 0
        assert await get_rating(db, community_id, pid) == (pytest.approx(rating + direct[pid]), rated_games + 1)

    rating_row, player_rows = await fetch_rating_snapshot(store, game.game_id)
    assert rating_row["goal_diff"] == -6
    assert {e["created_at"] for e in events if e["event_type"] == "apply"} == {rating_row["applied_at"]}
    for p in player_rows:
        assert p["pre_rating"] == seeded[p["profile_id"]][0]
        assert p["delta"] == pytest.approx(direct[p["profile_id"]])


@pytest.mark.regression
@pytest.mark.asyncio
async def test_late_roster_addition_is_rated_as_of_first_application(db, store):
    community_id = new_id()
    game = await seed_game(db, community_id=community_id, team_a_score=3, team_b_score=1, start_time=at(0))
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))

    # the late player wins a later game before being added to the first one
    late = new_id()
    later = await seed_game(db, community_id=community_id, team_a=[late], team_b=[new_id()], team_a_score=2, team_b_score=0, start_time=at(60))
    await reconcile_community_rating_for_game(store, later.game_id, now=at(60))
    assert await get_rating(db, community_id, late) == (1525.0, 1)
    events_before = await count_events(db)

    await add_player(db, game, "A", late)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(120))

    players = await snapshot_players(db, game.game_id)
    assert players[late]["pre_rating"] == 1500.0
    assert players[late]["pre_rated_games"] == 0
    assert players[late]["delta"] == 25.0

    # unrated players count at base, so nobody else moves
    assert await count_events(db) == events_before + 1
    adjust = [e for e in await list_events(db, game.game_id) if e["event_type"] == "adjust"]
    assert [(e["profile_id"], e["delta"], e["rated_games_delta"]) for e in adjust] == [(late, 25.0, 1)]
    assert await get_rating(db, community_id, late) == (1550.0, 2)


@pytest.mark.regression
@pytest.mark.asyncio
async def test_removed_player_is_uncounted_and_pruned(db, store):
    game = await seed_game(db, team_a_score=2, team_b_score=1)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))
    dropped = game.team_a[1]

    await remove_player(db, game, dropped)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(30))

    assert await get_rating(db, game.community_id, dropped) == (1500.0, 0)
    players = await snapshot_players(db, game.game_id)
    assert dropped not in players
    assert set(players) == set(game.roster)

    adjust = [e for e in await list_events(db, game.game_id) if e["event_type"] == "adjust"]
    assert [(e["profile_id"], e["delta"], e["rated_games_delta"]) for e in adjust] == [(dropped, -25.0, -1)]


@pytest.mark.regression
@pytest.mark.asyncio
async def test_reconfirmed_game_is_applied_again_from_stored_baseline(db, store):
    community_id = new_id()
    a1 = new_id()
    await seed_rating(db, community_id, a1, 1580.0, 5)
    game = await seed_game(db, community_id=community_id, team_a=[a1, new_id()], team_a_score=4, team_b_score=4)
    await reconcile_community_rating_for_game(store, game.game_id, now=at(0))
    applied = {pid: await get_rating(db, community_id, pid) for pid in game.roster}

    await set_score(db, game, 4, 4, status="disputed")
    await reconcile_community_rating_for_game(store, game.game_id, now=at(30))
    assert await get_rating(db, community_id, a1) == (pytest.approx(1580.0), 5)

    # a1 moves elsewhere in between; the game keeps its stored baseline
    await db.execute(sa.update(CommunityRating).where(
        CommunityRating.community_id == community_id,
        CommunityRating.profile_id == a1,
    ).values(rating=1700.0, rated_games=9))
    await set_score(db, game, 4, 4, status="confirmed")
    await reconcile_community_rating_for_game(store, game.game_id, now=at(60))

    first_delta = {pid: rating - 1500.0 for pid, (rating, _) in applied.items()}
    first_delta[a1] = applied[a1][0] - 1580.0
    assert await get_rating(db, community_id, a1) == (pytest.approx(1700.0 + first_delta[a1]), 10)
    for pid in game.roster:
        if pid != a1:
            assert await get_rating(db, community_id, pid) == (pytest.approx(applied[pid][0]), applied[pid][1])

    event_types = sorted(e["event_type"] for e in await list_events(db, game.game_id))
    assert event_types == ["apply"] * 8 + ["rollback"] * 4
    rating_row, player_rows = await fetch_rating_snapshot(store, game.game_id)
    assert rating_row["rated"] is True
    assert rating_row["invalidated_at"] is None
    assert {p["profile_id"]: p["delta"] for p in player_rows} == pytest.approx(first_delta)


@pytest.mark.asyncio
async def test_store_failures_surface_as_rating_store_errors(broken_store):
    with pytest.raises(RatingStoreError, match="load game"):
        await reconcile_community_rating_for_game(broken_store, new_id())
