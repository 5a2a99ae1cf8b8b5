"""
Cancellation and batch execution.

Long-running operations split their work into independent batches. Each
batch is a pure function of its inputs (including its own RNG substream), so
results can be gathered in submission order regardless of which worker
finished first.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

import numpy as np

from .errors import Cancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Caller-owned flag checked between batches of work."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise Cancelled()


def check_cancelled(token: Optional[CancellationToken]):
    if token is not None:
        token.raise_if_cancelled()


def seed_sequence(seed) -> np.random.SeedSequence:
    """Root SeedSequence for an operation; None draws fresh OS entropy."""
    if isinstance(seed, np.random.SeedSequence):
        return seed
    return np.random.SeedSequence(seed)


def run_batches(func: Callable[[T], R],
                items: Sequence[T],
                max_workers: int = 1,
                cancel_token: Optional[CancellationToken] = None) -> List[R]:
    """Apply func to every item, returning results in item order.

    The token is checked before each batch starts; a cancelled run raises
    Cancelled and no partial results are returned.
    """
    def guarded(item):
        check_cancelled(cancel_token)
        return func(item)

    check_cancelled(cancel_token)
    if max_workers <= 1 or len(items) <= 1:
        return [guarded(item) for item in items]

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(guarded, item) for item in items]
        try:
            results = [future.result() for future in futures]
        except Cancelled:
            for future in futures:
                future.cancel()
            logger.info("Batch run cancelled")
            raise
    check_cancelled(cancel_token)
    return results
