"""
Rate limiter for code redemption attempts
Counts consecutive failed attempts per key inside a sliding window and blocks
the key for a cool-down once the limit is hit. Advisory only: the durable
usage counters decide whether a code may be redeemed.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from collections import defaultdict
import logging

from utils.get_env import (
    env_flag,
    env_int,
    get_redeem_rate_limit_any_code_max_failures_env,
    get_redeem_rate_limit_cooldown_seconds_env,
    get_redeem_rate_limit_enabled_env,
    get_redeem_rate_limit_max_failures_env,
    get_redeem_rate_limit_window_seconds_env,
)

logger = logging.getLogger(__name__)

ANY_CODE = "*"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: Optional[float] = None


def code_key(account_id: str, code: str) -> str:
    return f"{account_id}:{code}"


def any_code_key(account_id: str) -> str:
    return f"{account_id}:{ANY_CODE}"


class RedemptionRateLimiter:
    """
    Failure-counting limiter for redemption attempts

    Configuration via environment variables:
    - REDEEM_RATE_LIMIT_MAX_FAILURES: Consecutive failures per account/code (default: 5)
    - REDEEM_RATE_LIMIT_ANY_CODE_MAX_FAILURES: Failures per account across codes (default: 20)
    - REDEEM_RATE_LIMIT_WINDOW_SECONDS: Failures older than this are forgotten (default: 900)
    - REDEEM_RATE_LIMIT_COOLDOWN_SECONDS: Block duration once tripped (default: 900)
    - REDEEM_RATE_LIMIT_ENABLED: Enable/disable rate limiting (default: true)
    """

    def __init__(
        self,
        max_failures: int = None,
        any_code_max_failures: int = None,
        window_seconds: float = None,
        cooldown_seconds: float = None,
        enabled: bool = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_failures = max_failures or env_int(
            get_redeem_rate_limit_max_failures_env(), 5
        )
        self.any_code_max_failures = any_code_max_failures or env_int(
            get_redeem_rate_limit_any_code_max_failures_env(), 20
        )
        self.window_seconds = window_seconds or env_int(
            get_redeem_rate_limit_window_seconds_env(), 900
        )
        self.cooldown_seconds = cooldown_seconds or env_int(
            get_redeem_rate_limit_cooldown_seconds_env(), 900
        )
        self.enabled = (
            enabled
            if enabled is not None
            else env_flag(get_redeem_rate_limit_enabled_env(), True)
        )
        self.clock = clock

        # Track failures per key (account:code or account:*)
        self.states: Dict[str, Dict] = defaultdict(
            lambda: {"attempts": 0, "last_attempt_at": 0.0, "blocked_until": None}
        )
        self.last_pruned_at = 0.0

        logger.info(
            f"Redemption rate limiter initialized: {self.max_failures} failures per "
            f"{self.window_seconds}s window, {self.cooldown_seconds}s cool-down"
        )

    def _limit_for(self, key: str) -> int:
        if key.endswith(f":{ANY_CODE}"):
            return self.any_code_max_failures
        return self.max_failures

    def check(self, key: str) -> RateLimitDecision:
        """
        Check whether another attempt is allowed for key

        Returns:
            RateLimitDecision with a positive retry_after_seconds when blocked
        """
        if not self.enabled or key not in self.states:
            return RateLimitDecision(allowed=True)

        state = self.states[key]
        now = self.clock()
        blocked_until = state["blocked_until"]
        if blocked_until is not None:
            if blocked_until > now:
                return RateLimitDecision(
                    allowed=False, retry_after_seconds=blocked_until - now
                )
            # Cool-down elapsed: start over
            del self.states[key]
        return RateLimitDecision(allowed=True)

    def record(self, key: str, success: bool) -> None:
        """Record the outcome of an attempt; a success clears the key"""
        if not self.enabled:
            return

        if success:
            self.states.pop(key, None)
            return

        now = self.clock()
        if now - self.last_pruned_at >= self.window_seconds:
            self._prune(now)

        state = self.states[key]
        if now - state["last_attempt_at"] > self.window_seconds:
            state["attempts"] = 0
            state["blocked_until"] = None

        state["attempts"] += 1
        state["last_attempt_at"] = now

        limit = self._limit_for(key)
        if state["attempts"] >= limit:
            state["blocked_until"] = now + self.cooldown_seconds
            logger.warning(
                f"Redemption rate limit tripped for {key}: {state['attempts']} failures, "
                f"blocked for {self.cooldown_seconds}s"
            )
        else:
            logger.debug(f"Redemption failure {state['attempts']}/{limit} for {key}")

    def _is_stale(self, state: Dict, now: float) -> bool:
        blocked_until = state["blocked_until"]
        return now - state["last_attempt_at"] > self.window_seconds and (
            blocked_until is None or blocked_until <= now
        )

    def _prune(self, now: float) -> None:
        """Drop keys whose failures have aged out and that are no longer blocked"""
        stale = [key for key, state in self.states.items() if self._is_stale(state, now)]
        for key in stale:
            del self.states[key]
        self.last_pruned_at = now
        if stale:
            logger.debug(f"Pruned {len(stale)} idle rate limit keys")

    def reset(self, key: str = None) -> None:
        """Reset rate limit for key or all if key is None"""
        if key:
            self.states.pop(key, None)
            logger.info(f"Rate limit reset for {key}")
        else:
            self.states.clear()
            logger.info("Rate limit reset for all keys")


# Global rate limiter instance
_rate_limiter: Optional[RedemptionRateLimiter] = None


def get_rate_limiter() -> RedemptionRateLimiter:
    """Get or create global rate limiter instance"""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RedemptionRateLimiter()
    return _rate_limiter
