"""Anti-cheat sanity checks for submitted scores.

Checks run in a fixed order (name, score, dappies, ratio) and the first
failure wins, so a caller always sees a single, specific reason.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass

from dappyboard.errors import SubmissionRejected

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 20

# Score is milliseconds survived: 100 ms up to 10 minutes
SCORE_MIN = 100
SCORE_MAX = 600_000

# Roughly one dappy every 3 seconds over a 10 minute run
DAPPIES_MIN = 0
DAPPIES_MAX = 200

# Below this count the ratio check is skipped
RATIO_FREE_DAPPIES = 10
MS_PER_DAPPY = 3000


class RejectionReason(str, enum.Enum):
    INVALID_NAME = "invalid_name"
    INVALID_SCORE = "invalid_score"
    INVALID_DAPPIES = "invalid_dappies"
    IMPLAUSIBLE_RATIO = "implausible_ratio"


@dataclass(frozen=True)
class ValidatedSubmission:
    name: str
    score: int
    dappies: int


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def min_score_for(dappies: int) -> int:
    return dappies * MS_PER_DAPPY


def validate_submission(name: str, score: int, dappies: int) -> ValidatedSubmission:
    """Return the normalized submission or raise :class:`SubmissionRejected`."""
    trimmed = name.strip() if isinstance(name, str) else ""
    if not NAME_MIN_LENGTH <= len(trimmed) <= NAME_MAX_LENGTH:
        raise SubmissionRejected(
            RejectionReason.INVALID_NAME,
            f"Name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters",
        )

    if not _is_int(score) or not SCORE_MIN <= score <= SCORE_MAX:
        raise SubmissionRejected(
            RejectionReason.INVALID_SCORE,
            f"Score must be between {SCORE_MIN} and {SCORE_MAX}, got {score!r}",
        )

    if not _is_int(dappies) or not DAPPIES_MIN <= dappies <= DAPPIES_MAX:
        raise SubmissionRejected(
            RejectionReason.INVALID_DAPPIES,
            f"Dappies must be between {DAPPIES_MIN} and {DAPPIES_MAX}, got {dappies!r}",
        )

    if dappies > RATIO_FREE_DAPPIES and score < min_score_for(dappies):
        raise SubmissionRejected(
            RejectionReason.IMPLAUSIBLE_RATIO,
            f"Score {score} is too low for {dappies} dappies "
            f"(needs at least {min_score_for(dappies)})",
        )

    return ValidatedSubmission(name=trimmed, score=score, dappies=dappies)
