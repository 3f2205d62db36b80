# src/cadence/series/cas.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace

from ..core.errors import ConcurrentUpdateConflict
from ..core.ports import SeriesStateRepository
from .series_models import SeriesState

logger = logging.getLogger(__name__)

DEFAULT_CAS_ATTEMPTS = 3

Mutation = Callable[[SeriesState], SeriesState | None]


def update_series(
    repo: SeriesStateRepository,
    series_id: str,
    mutate: Mutation,
    *,
    attempts: int = DEFAULT_CAS_ATTEMPTS,
) -> SeriesState:
    """
    Read the series, apply `mutate`, write back with compare-and-swap.

    `mutate` receives a fresh snapshot on every attempt and may:
    - return a new state to write,
    - return None (or the same state) for a no-op,
    - raise to abort without writing.

    Returns the committed state (or the unchanged snapshot for a no-op).
    Raises ConcurrentUpdateConflict once `attempts` CAS writes have lost.
    """
    for attempt in range(1, max(1, attempts) + 1):
        state, version = repo.get(series_id)
        new_state = mutate(state)
        if new_state is None or new_state == state:
            return state
        if repo.compare_and_swap(series_id, version, new_state):
            return replace(new_state, version=version + 1)
        logger.debug("CAS conflict series=%s attempt=%s/%s", series_id, attempt, attempts)

    raise ConcurrentUpdateConflict(f"Series {series_id} changed concurrently {attempts} times")
