"""Generated names for dependent resources."""
import random
from typing import Optional


class UniqueNameGenerator:
    """Produces `<prefix>-<NNNN>` names with a random numeric suffix.

    Uniqueness is not tracked here: the backend's collision error is the
    authoritative signal and the orchestrator retries with a fresh name.
    """

    def __init__(self, prefix: str, low: int = 1000, high: int = 9999, rng: Optional[random.Random] = None):
        if low > high:
            raise ValueError(f"Empty suffix range {low}-{high}")
        self.prefix = prefix
        self.low = low
        self.high = high
        self.rng = rng or random.Random()

    def __call__(self) -> str:
        return f"{self.prefix}-{self.rng.randint(self.low, self.high)}"
