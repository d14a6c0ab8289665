from __future__ import annotations

"""Raw quiz input parsing and validation."""

import re
from dataclasses import dataclass
from typing import Any

from .errors import InvalidSumError, MissingNameError, NegativeScoreError


TOTAL_POINTS = 16
LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")
MAX_SCORE_DIGITS = 15
SCORE_LIMIT = 10**MAX_SCORE_DIGITS


@dataclass(frozen=True)
class QuizInput:
    """Form values as typed by the user; nothing here is validated yet."""

    name: str = ""
    a: Any = ""
    b: Any = ""
    c: Any = ""
    d: Any = ""

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "QuizInput":
        return cls(
            name=str(payload.get("name") or ""),
            a=payload.get("a", ""),
            b=payload.get("b", ""),
            c=payload.get("c", ""),
            d=payload.get("d", ""),
        )


@dataclass(frozen=True)
class ScoreSet:
    a: int
    b: int
    c: int
    d: int

    @property
    def total(self) -> int:
        return self.a + self.b + self.c + self.d

    def items(self) -> list[tuple[str, int]]:
        return [("A", self.a), ("B", self.b), ("C", self.c), ("D", self.d)]

    def to_dict(self) -> dict[str, int]:
        return dict(self.items())

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ScoreSet":
        return cls(a=int(payload["A"]), b=int(payload["B"]), c=int(payload["C"]), d=int(payload["D"]))


@dataclass(frozen=True)
class ValidQuiz:
    name: str
    scores: ScoreSet


def _clamp(value: int) -> int:
    return max(-SCORE_LIMIT, min(SCORE_LIMIT, value))


def parse_score(value: Any) -> int:
    """Leading-integer parse; anything without leading digits counts as 0.

    Magnitudes are clamped to `SCORE_LIMIT` so oversized input still fails the
    sum check instead of overflowing conversions downstream.
    """

    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return _clamp(value)
    if isinstance(value, float):
        return _clamp(int(value)) if value == value and abs(value) != float("inf") else 0
    match = LEADING_INT_PATTERN.match(str(value))
    if not match:
        return 0
    digits = match.group(1)
    sign = -1 if digits.startswith("-") else 1
    magnitude = digits.lstrip("+-").lstrip("0") or "0"
    if len(magnitude) > MAX_SCORE_DIGITS:
        return sign * SCORE_LIMIT
    return sign * int(magnitude)


def validate_quiz(quiz: QuizInput, *, total_points: int = TOTAL_POINTS) -> ValidQuiz:
    """Parse scores, require a name, then require the exact point total."""

    scores = ScoreSet(
        a=parse_score(quiz.a),
        b=parse_score(quiz.b),
        c=parse_score(quiz.c),
        d=parse_score(quiz.d),
    )
    name = (quiz.name or "").strip()
    if not name:
        raise MissingNameError("Please enter your name.")
    if scores.total != total_points:
        raise InvalidSumError(total=scores.total, expected=total_points)
    negative = [key for key, value in scores.items() if value < 0]
    if negative:
        raise NegativeScoreError("Scores cannot be negative.", categories=negative)
    return ValidQuiz(name=name, scores=scores)
