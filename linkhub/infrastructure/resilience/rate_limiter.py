"""Implementation of the request rate limiter and cooldown tracker.

Controls the frequency of outgoing enrichment requests to stay under the
provider's requests-per-minute quota, and pauses all dispatching for a
cooldown period after quota errors or a run of consecutive failures.

The transitions are pure functions over an immutable RateLimitState;
the RateLimiter class owns the current state and persists it after every
transition so it survives restarts.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from linkhub.domain.interfaces.state_store import StateStore
from linkhub.domain.models.common import Clock, system_clock
from linkhub.domain.models.rate_limit import RateLimitState

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS_PER_MINUTE = 15
DEFAULT_WINDOW_SECONDS = 60
DEFAULT_COOLDOWN_SECONDS = 60
DEFAULT_MAX_CONSECUTIVE_ERRORS = 5
STATE_KEY = "rate_limit_state"


# --- Pure transitions ---

def expire(state: RateLimitState, now: float, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> RateLimitState:
    """Clears an elapsed cooldown and resets an elapsed request window."""
    if state.is_in_cooldown and now >= state.cooldown_until:
        state = replace(state, is_in_cooldown=False, consecutive_errors=0)
    if now - state.window_start > window_seconds:
        state = replace(state, requests_this_window=0, window_start=now)
    return state


def in_cooldown(state: RateLimitState, now: float) -> bool:
    return state.is_in_cooldown and now < state.cooldown_until


def can_dispatch(
    state: RateLimitState,
    now: float,
    max_requests: int = DEFAULT_MAX_REQUESTS_PER_MINUTE,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
) -> bool:
    """Returns True if a batch may be submitted now."""
    if in_cooldown(state, now):
        return False
    refreshed = expire(state, now, window_seconds)
    return refreshed.requests_this_window < max_requests


def record_dispatch(
    state: RateLimitState,
    now: float,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
) -> RateLimitState:
    """Counts one batch submission (never one per item)."""
    if now - state.window_start > window_seconds:
        state = replace(state, requests_this_window=0, window_start=now)
    return replace(state, requests_this_window=state.requests_this_window + 1)


def record_failure(
    state: RateLimitState,
    now: float,
    is_quota_error: bool,
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS,
) -> RateLimitState:
    """Counts a failed call; quota errors or too many failures start a cooldown."""
    errors = state.consecutive_errors + 1
    state = replace(state, consecutive_errors=errors)
    if is_quota_error or errors >= max_consecutive_errors:
        state = replace(state, is_in_cooldown=True, cooldown_until=now + cooldown_seconds)
    return state


def record_success(state: RateLimitState) -> RateLimitState:
    """Resets the failure streak. An active cooldown is left to expire naturally."""
    return replace(state, consecutive_errors=0)


def format_cooldown(seconds: float) -> str:
    if seconds <= 0:
        return ""
    total = int(seconds)
    return f"{total // 60}m {total % 60}s"


# --- Stateful facade ---

class RateLimiter:
    """Owns the process-wide RateLimitState and persists every transition."""

    def __init__(
        self,
        state_store: Optional[StateStore] = None,
        max_requests: int = DEFAULT_MAX_REQUESTS_PER_MINUTE,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS,
        clock: Clock = system_clock,
    ):
        """Initializes the rate limiter, loading any persisted state.

        Args:
            state_store: Persistence port; state is kept in memory only if None.
            max_requests: Maximum number of batch requests per window.
            window_seconds: Length of the request window.
            cooldown_seconds: Length of the cooldown entered after failures.
            max_consecutive_errors: Failure streak that forces a cooldown.
            clock: Returns the current time in seconds.
        """
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("Max requests and window must be positive.")
        self.state_store = state_store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self.max_consecutive_errors = max_consecutive_errors
        self.clock = clock
        self._state = self._load()
        logger.info(
            f"RateLimiter initialized: {max_requests} requests / {window_seconds}s, "
            f"cooldown {cooldown_seconds}s after quota errors or {max_consecutive_errors} failures."
        )

    @property
    def state(self) -> RateLimitState:
        return self._state

    def _load(self) -> RateLimitState:
        now = self.clock()
        if self.state_store:
            try:
                saved = self.state_store.load(STATE_KEY)
                if saved:
                    state = expire(RateLimitState.from_dict(saved), now, self.window_seconds)
                    logger.debug(f"Loaded persisted rate limit state: {state}")
                    return state
            except Exception as e:
                logger.error(f"Error loading rate limit state: {e}")
        return RateLimitState.initial(now)

    def _commit(self, state: RateLimitState) -> RateLimitState:
        self._state = state
        if self.state_store:
            try:
                self.state_store.save(STATE_KEY, state.to_dict())
            except Exception as e:
                logger.error(f"Error saving rate limit state: {e}")
        return state

    def is_in_cooldown(self) -> bool:
        """Checks the cooldown, clearing it (and the error streak) once it has elapsed."""
        now = self.clock()
        if self._state.is_in_cooldown and not in_cooldown(self._state, now):
            logger.info("Rate limit cooldown expired.")
            self._commit(expire(self._state, now, self.window_seconds))
        return in_cooldown(self._state, now)

    def can_dispatch(self) -> bool:
        now = self.clock()
        refreshed = expire(self._state, now, self.window_seconds)
        if refreshed != self._state:
            self._commit(refreshed)
        allowed = can_dispatch(self._state, now, self.max_requests, self.window_seconds)
        if not allowed:
            logger.debug(
                f"Dispatch not permitted: cooldown={self._state.is_in_cooldown}, "
                f"requests={self._state.requests_this_window}/{self.max_requests}"
            )
        return allowed

    def record_dispatch(self) -> RateLimitState:
        return self._commit(record_dispatch(self._state, self.clock(), self.window_seconds))

    def record_failure(self, is_quota_error: bool) -> RateLimitState:
        was_in_cooldown = self._state.is_in_cooldown
        state = self._commit(record_failure(
            self._state,
            self.clock(),
            is_quota_error,
            self.cooldown_seconds,
            self.max_consecutive_errors,
        ))
        if state.is_in_cooldown and not was_in_cooldown:
            until = datetime.fromtimestamp(state.cooldown_until).strftime("%H:%M:%S")
            logger.warning(f"Rate limit cooldown activated until {until} (consecutive errors: {state.consecutive_errors}).")
        return state

    def record_success(self) -> RateLimitState:
        return self._commit(record_success(self._state))

    def cooldown_remaining(self) -> float:
        """Seconds left in the current cooldown, 0 if none."""
        if not self._state.is_in_cooldown:
            return 0.0
        return max(0.0, self._state.cooldown_until - self.clock())

    def reset(self) -> RateLimitState:
        logger.info("Rate limit state reset.")
        return self._commit(RateLimitState.initial(self.clock()))
