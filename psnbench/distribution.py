"""
Weighted sampling of work kinds.

Each work request draws a uniform integer in ``[0, 99]`` and maps it onto
consecutive ranges sized by the configured rates, in the fixed order
CREATE, READ, UPDATE, DELETE, PING.  A rate of zero yields an empty range,
so that kind can never be drawn.
"""

from __future__ import annotations

import bisect
import random
from collections.abc import Iterator
from enum import Enum
from itertools import accumulate
from typing import TYPE_CHECKING

from psnbench.exceptions import ConfigurationError

if TYPE_CHECKING:
    from psnbench.config import Configuration


class WorkKind(Enum):
    """The operations a work item can perform against a backend."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    PING = "ping"


DRAW_ORDER = (WorkKind.CREATE, WorkKind.READ, WorkKind.UPDATE, WorkKind.DELETE, WorkKind.PING)


class WorkDistribution:
    """
    Sampler producing work kinds in the configured proportions.

    Args:
        create_rate: Percentage of CREATE draws.
        read_rate: Percentage of READ draws.
        update_rate: Percentage of UPDATE draws.
        delete_rate: Percentage of DELETE draws.
        ping_rate: Percentage of PING draws.
        rng: Random source; a private ``random.Random`` by default.  Pass a
            seeded instance for reproducible sequences.

    Raises:
        ConfigurationError: If a rate is negative or the rates do not sum
            to 100.
    """

    def __init__(
        self,
        create_rate: int,
        read_rate: int,
        update_rate: int,
        delete_rate: int,
        ping_rate: int,
        rng: random.Random | None = None,
    ) -> None:
        rates = (create_rate, read_rate, update_rate, delete_rate, ping_rate)
        if any(rate < 0 for rate in rates):
            raise ConfigurationError(f"Rates must be zero or positive, got {rates}")
        if sum(rates) != 100:
            raise ConfigurationError(f"Rates must add up to exactly 100, got {sum(rates)}")

        self.rates = rates
        # Upper bounds (exclusive) of each kind's range; e.g. rates
        # (20, 30, 0, 0, 50) -> (20, 50, 50, 50, 100).
        self._bounds = tuple(accumulate(rates))
        self._rng = rng or random.Random()

    @classmethod
    def from_configuration(
        cls, config: Configuration, rng: random.Random | None = None
    ) -> WorkDistribution:
        return cls(*config.rates, rng=rng)

    def sample(self) -> WorkKind:
        """Draw one work kind.  Never blocks, never fails."""
        draw = self._rng.randint(0, 99)
        # bisect_right skips empty ranges: a bound equal to the draw belongs
        # to the next non-empty kind.
        return DRAW_ORDER[bisect.bisect_right(self._bounds, draw)]

    def __iter__(self) -> Iterator[WorkKind]:
        while True:
            yield self.sample()
