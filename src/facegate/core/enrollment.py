"""Duplicate-face check run before a new identity is enrolled.

The matcher does not know it is being used for enrollment; the policy here
decides what a non-unknown result means.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from facegate.core.messages import already_registered

if TYPE_CHECKING:
    from facegate.core.matcher import IdentityMatcher
    from facegate.core.types import MatchResult

logger = logging.getLogger(__name__)


class DuplicatePolicy(StrEnum):
    BLOCK = "block"
    ADVISE = "advise"


@dataclass(frozen=True)
class EnrollmentCheck:
    allowed: bool
    match: MatchResult
    reason: str | None = None

    @property
    def duplicate(self) -> bool:
        return self.match.matched


def check_enrollment(
    matcher: IdentityMatcher,
    candidate: object,
    policy: DuplicatePolicy = DuplicatePolicy.BLOCK,
) -> EnrollmentCheck:
    """Check a candidate embedding against the existing gallery.

    Under ``BLOCK`` a match rejects the enrollment; under ``ADVISE`` it is
    allowed and the closest identity is reported for a human to judge.
    """
    match = matcher.find_best_match(candidate)
    if not match.matched:
        return EnrollmentCheck(allowed=True, match=match)

    record = matcher.get(match.label)
    reason = already_registered(record.display_name if record is not None else match.label)
    logger.info("Candidate face matches %s (distance=%.4f, policy=%s)", match.label, match.distance, policy)
    return EnrollmentCheck(allowed=policy is DuplicatePolicy.ADVISE, match=match, reason=reason)
