"""
Deterministic exponential backoff for the push channel.
"""

from __future__ import annotations

from enum import Enum

from leadsync_runtime.types import ReconnectConfig


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class ReconnectionPolicy:
    """Doubles the delay on every failure up to a ceiling; a success resets it.

    No jitter is applied, so a run of failures always yields
    ``floor, 2*floor, 4*floor, ...`` capped at ``ceiling``.
    """

    def __init__(self, floor_ms: int = 1000, ceiling_ms: int = 30000) -> None:
        if floor_ms <= 0 or ceiling_ms < floor_ms:
            raise ValueError("backoff requires 0 < floor_ms <= ceiling_ms")
        self.floor_ms = floor_ms
        self.ceiling_ms = ceiling_ms

    @classmethod
    def from_config(cls, config: ReconnectConfig) -> ReconnectionPolicy:
        return cls(config.initial_delay_ms, config.max_delay_ms)

    def next_delay(self, current_delay_ms: int, outcome: Outcome) -> int:
        if outcome is Outcome.SUCCESS:
            return self.floor_ms
        return min(max(current_delay_ms, self.floor_ms) * 2, self.ceiling_ms)
