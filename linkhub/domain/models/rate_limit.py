"""Value object holding the process-wide request quota bookkeeping."""

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class RateLimitState:
    """Sliding request window plus cooldown bookkeeping.

    Instances are immutable; the rate limiter transitions return new states.
    """
    requests_this_window: int = 0
    window_start: float = 0.0
    is_in_cooldown: bool = False
    cooldown_until: float = 0.0
    consecutive_errors: int = 0

    @classmethod
    def initial(cls, now: float) -> "RateLimitState":
        return cls(window_start=now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimitState":
        return cls(
            requests_this_window=int(data.get("requests_this_window", 0)),
            window_start=float(data.get("window_start", 0.0)),
            is_in_cooldown=bool(data.get("is_in_cooldown", False)),
            cooldown_until=float(data.get("cooldown_until", 0.0)),
            consecutive_errors=int(data.get("consecutive_errors", 0)),
        )
