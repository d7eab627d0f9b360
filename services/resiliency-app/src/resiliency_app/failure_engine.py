"""
Failure Decision Engine for Resiliency App.

Decides, per attempt, whether a request under test succeeds, stalls or fails.
The attempt is recorded before the decision is taken, so the ordinal used
for the decision is the one the call history reports.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from resiliency_app.call_tracker import CallTracker
from resiliency_app.models import FailureDescription

logger = logging.getLogger(__name__)


class Action(str, Enum):
    """How the transport layer should answer an attempt."""

    SUCCEED = "succeed"
    STALL_THEN_SUCCEED = "stall_then_succeed"
    FAIL_IMMEDIATELY = "fail_immediately"


@dataclass(frozen=True)
class Verdict:
    """Outcome of one attempt."""

    action: Action
    attempt: int           # Zero-based ordinal recorded for this attempt
    stall: timedelta | None = None  # Only set for STALL_THEN_SUCCEED

    @property
    def succeeds(self) -> bool:
        return self.action is not Action.FAIL_IMMEDIATELY


class FailureDecisionEngine:
    """
    Scripted failure injection driven by the request payload.

    For a description with ``max_failure_count = k``, attempts ``0..k-1`` are
    failing attempts and attempt ``k`` onward succeeds. A failing attempt
    either errors immediately or, when ``timeout`` is set, stalls for that
    long and then succeeds, leaving it to the caller's deadline to turn the
    stall into a timeout.
    """

    def __init__(self, tracker: CallTracker) -> None:
        self.tracker = tracker

    def decide(self, description: FailureDescription) -> Verdict:
        attempt = self.tracker.record_attempt(description.id)

        limit = description.max_failure_count
        if limit is None or attempt >= limit:
            return Verdict(Action.SUCCEED, attempt)
        if description.timeout is not None:
            return Verdict(Action.STALL_THEN_SUCCEED, attempt, stall=description.timeout)
        return Verdict(Action.FAIL_IMMEDIATELY, attempt)

    async def apply(self, description: FailureDescription, source: str) -> Verdict:
        """Decide for one inbound attempt and carry out any stall."""
        verdict = self.decide(description)
        seen = len(self.tracker.attempts(description.id))
        logger.info(f"{source} received {description.id!r}, attempt {verdict.attempt}")
        logger.info("Seen %s %d times.", description.id, seen)

        if verdict.action is Action.STALL_THEN_SUCCEED and verdict.stall is not None:
            logger.info(
                "Stalling %s attempt %d for %.3fs",
                description.id,
                verdict.attempt,
                verdict.stall.total_seconds(),
            )
            # The record is already committed; no tracker lock is held here.
            await asyncio.sleep(verdict.stall.total_seconds())
        elif verdict.action is Action.FAIL_IMMEDIATELY:
            logger.info(f"Failing {description.id!r} attempt {verdict.attempt} on purpose")

        return verdict
