"""
Tests for the collection-phase tracker: maturity gating, monotone phase,
explicit reset and the append-only state log.
"""

from __future__ import annotations

import asyncio
import gc
from datetime import timedelta

from conftest import NOW
from trustscore.collection import CollectionTracker
from trustscore.schemas import Phase


def test_short_history_is_collecting(store, make_vector):
    tracker = CollectionTracker(store)
    state = asyncio.run(tracker.observe(make_vector(history_days=10)))
    assert state.phase == Phase.COLLECTING
    assert state.observation_days == 10
    assert state.source_categories == ["payments", "utilities"]


def test_long_history_with_two_categories_is_mature(store, make_vector):
    tracker = CollectionTracker(store)
    state = asyncio.run(tracker.observe(make_vector(history_days=60)))
    assert state.phase == Phase.MATURE
    assert state.observation_days == 60


def test_single_category_never_matures(store, make_vector):
    tracker = CollectionTracker(store)
    state = asyncio.run(tracker.observe(make_vector(history_days=90, categories=("payments",))))
    assert state.phase == Phase.COLLECTING


def test_matures_once_enough_days_pass(store, make_vector):
    tracker = CollectionTracker(store)
    first = make_vector(history_days=20)
    asyncio.run(tracker.observe(first))
    later = make_vector(history_days=20, as_of=NOW + timedelta(days=15))
    later = later.model_copy(update={"sources": first.sources})

    state = asyncio.run(tracker.observe(later))
    assert state.phase == Phase.MATURE
    assert state.observation_days == 35
    assert [s.phase for s in store.collection_log("subj-1")] == [Phase.COLLECTING, Phase.MATURE]


def test_mature_does_not_revert(store, make_vector):
    tracker = CollectionTracker(store)
    asyncio.run(tracker.observe(make_vector(history_days=60)))
    older_view = make_vector(history_days=5, as_of=NOW - timedelta(days=50), categories=("payments",))
    state = asyncio.run(tracker.observe(older_view))
    assert state.phase == Phase.MATURE
    assert state.observation_days == 60


def test_reset_starts_a_new_collecting_state(store, make_vector):
    tracker = CollectionTracker(store)
    asyncio.run(tracker.observe(make_vector(history_days=60)))
    reset = asyncio.run(tracker.reset("subj-1", at=NOW))
    assert reset.phase == Phase.COLLECTING
    assert tracker.get_state("subj-1") == reset
    assert len(store.collection_log("subj-1")) == 2


def test_unchanged_observation_appends_nothing(store, make_vector):
    tracker = CollectionTracker(store)
    vector = make_vector(history_days=60)
    asyncio.run(tracker.observe(vector))
    asyncio.run(tracker.observe(vector))
    assert len(store.collection_log("subj-1")) == 1


def test_concurrent_observations_are_serialized(store, make_vector):
    tracker = CollectionTracker(store)
    vectors = [make_vector(history_days=10, as_of=NOW + timedelta(days=d)) for d in range(5)]

    async def run():
        return await asyncio.gather(*(tracker.observe(v) for v in vectors))

    asyncio.run(run())
    days = [s.observation_days for s in store.collection_log("subj-1")]
    assert days == sorted(days)
    assert tracker.get_state("subj-1").observation_days == 14


def test_subject_locks_are_released_after_use(store, make_vector):
    tracker = CollectionTracker(store)
    for i in range(50):
        asyncio.run(tracker.observe(make_vector(f"subj-{i}")))
    gc.collect()
    assert len(tracker._locks) == 0
    assert tracker.get_state("subj-49").phase == Phase.MATURE
