"""
Reconnect Backoff

Exponential delay with jitter, capped, over a bounded number of retries.
Defaults: 1s base, 5s cap, 10 retries.
"""

import random
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class BackoffPolicy:
    base: float = 1.0
    cap: float = 5.0
    max_retries: int = 10
    jitter: bool = True
    rand: Callable[[], float] = field(default=random.random, repr=False)

    def delay(self, attempt: int) -> float:
        """
        Delay before retry number attempt (0-based).

        Without jitter the delay is min(cap, base * 2**attempt); with jitter
        it is drawn from [delay / 2, delay].
        """
        ceiling = min(self.cap, self.base * (2 ** max(attempt, 0)))
        if not self.jitter:
            return ceiling
        return ceiling / 2 + self.rand() * ceiling / 2

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_retries

    @classmethod
    def from_config(cls, client_config) -> "BackoffPolicy":
        return cls(
            base=client_config.backoff_base,
            cap=client_config.backoff_cap,
            max_retries=client_config.max_retries,
        )
