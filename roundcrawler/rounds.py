"""
Round Oracles
=============
Async callables answering "which round is it now?".

``CrawlEngine`` only needs ``async () -> int``; these two cover the local
CLI and tests.
"""

from __future__ import annotations

import time
from typing import Callable, Optional


class ClockRoundOracle:
    """Round number derived from wall-clock time and a fixed round length.

    Round ``start_round`` begins at ``epoch``; each ``round_length_s``
    seconds after that is one more round.
    """

    def __init__(
        self,
        round_length_s: float = 600.0,
        *,
        start_round: int = 0,
        epoch: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        if round_length_s <= 0:
            raise ValueError("round_length_s must be positive")
        self.round_length_s = round_length_s
        self.start_round = start_round
        self.clock = clock
        self.epoch = clock() if epoch is None else epoch

    def current(self) -> int:
        elapsed = max(0.0, self.clock() - self.epoch)
        return self.start_round + int(elapsed // self.round_length_s)

    def seconds_left(self) -> float:
        elapsed = max(0.0, self.clock() - self.epoch)
        return self.round_length_s - (elapsed % self.round_length_s)

    async def __call__(self) -> int:
        return self.current()


class StaticRoundOracle:
    """Round number set by hand; ``advance()`` moves it on."""

    def __init__(self, round_number: int = 0):
        self.round = round_number

    def advance(self, by: int = 1) -> int:
        self.round += by
        return self.round

    async def __call__(self) -> int:
        return self.round
