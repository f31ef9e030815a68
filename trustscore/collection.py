"""
TrustScore Engine - Collection-Phase Tracker
============================================

Per-subject state machine ``collecting -> mature``. Maturity needs both
enough elapsed history and breadth across source categories. The phase only
moves forward; ``reset`` is the single way back.
"""

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Optional

from .config import MATURITY_DAYS, MIN_SOURCE_CATEGORIES
from .schemas import CollectionState, FeatureVector, Phase, utcnow
from .store import RecordStore

logger = logging.getLogger(__name__)


class CollectionTracker:

    def __init__(
        self,
        store: RecordStore,
        maturity_days: int = MATURITY_DAYS,
        min_source_categories: int = MIN_SOURCE_CATEGORIES,
    ):
        self.store = store
        self.maturity_days = maturity_days
        self.min_source_categories = min_source_categories
        # Locks live only while a request for the subject holds them.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, subject_id: str) -> asyncio.Lock:
        lock = self._locks.get(subject_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[subject_id] = lock
        return lock

    def get_state(self, subject_id: str) -> Optional[CollectionState]:
        return self.store.latest_collection_state(subject_id)

    async def observe(self, vector: FeatureVector) -> CollectionState:
        """Fold a new feature vector into the subject's state.

        The read-check-append runs under the subject's lock so concurrent
        requests for one subject cannot interleave.
        """
        async with self._lock_for(vector.subject_id):
            current = self.store.latest_collection_state(vector.subject_id)
            updated = self._advance(current, vector)
            if updated != current:
                self.store.append_collection_state(updated)
                if current is not None and current.phase != updated.phase:
                    logger.info(
                        "Subject %s matured after %d observation days",
                        vector.subject_id, updated.observation_days,
                    )
            return updated

    async def reset(self, subject_id: str, at: Optional[datetime] = None) -> CollectionState:
        """Explicit data-reset event: start collecting again from ``at``."""
        at = at or utcnow()
        async with self._lock_for(subject_id):
            state = CollectionState(
                subject_id=subject_id,
                phase=Phase.COLLECTING,
                collection_started_at=at,
                observation_days=0,
                source_categories=[],
                last_updated=at,
            )
            self.store.append_collection_state(state)
            logger.info("Collection state for %s reset", subject_id)
            return state

    def _advance(self, current: Optional[CollectionState], vector: FeatureVector) -> CollectionState:
        if current is None:
            started = _earliest_observation(vector)
            categories = set()
            observation_days = 0
            phase = Phase.COLLECTING
        else:
            started = current.collection_started_at
            categories = set(current.source_categories)
            observation_days = current.observation_days
            phase = current.phase

        categories.update(vector.source_categories())
        elapsed = (vector.as_of - started).days
        observation_days = max(observation_days, elapsed, 0)

        if (
            phase == Phase.COLLECTING
            and observation_days >= self.maturity_days
            and len(categories) >= self.min_source_categories
        ):
            phase = Phase.MATURE

        last_updated = vector.as_of if current is None else max(current.last_updated, vector.as_of)
        return CollectionState(
            subject_id=vector.subject_id,
            phase=phase,
            collection_started_at=started,
            observation_days=observation_days,
            source_categories=sorted(categories),
            last_updated=last_updated,
        )


def _earliest_observation(vector: FeatureVector) -> datetime:
    seen = [s.first_observed for s in vector.sources if s.first_observed is not None]
    seen.extend(o.observed_at for obs in vector.windows.values() for o in obs)
    return min(seen + [vector.as_of])
