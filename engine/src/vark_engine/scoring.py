from __future__ import annotations

"""Score-to-percentage transformation and chart-ready breakdowns.

Percentages use the configured point total as the fixed denominator and are
rounded half away from zero (`ROUND_HALF_UP`) to one fractional digit, so
6.25 renders as "6.3" and 18.75 as "18.8".
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from .config import DEFAULT_CATEGORIES, Category
from .quiz import TOTAL_POINTS, ScoreSet


ONE_DECIMAL = Decimal("0.1")


@dataclass(frozen=True)
class PercentageSet:
    a: str
    b: str
    c: str
    d: str

    def items(self) -> list[tuple[str, str]]:
        return [("A", self.a), ("B", self.b), ("C", self.c), ("D", self.d)]

    def to_dict(self) -> dict[str, str]:
        return dict(self.items())

    def total(self) -> Decimal:
        return sum((Decimal(value) for _, value in self.items()), Decimal("0"))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PercentageSet":
        return cls(a=str(payload["A"]), b=str(payload["B"]), c=str(payload["C"]), d=str(payload["D"]))


@dataclass(frozen=True)
class BreakdownItem:
    key: str
    name: str
    value: int
    color: str

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "name": self.name, "value": self.value, "color": self.color}


def percentage(score: int, total_points: int = TOTAL_POINTS) -> str:
    value = (Decimal(score) * 100 / Decimal(total_points)).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)
    return f"{value:.1f}"


def calculate_percentages(scores: ScoreSet, total_points: int = TOTAL_POINTS) -> PercentageSet:
    return PercentageSet(
        a=percentage(scores.a, total_points),
        b=percentage(scores.b, total_points),
        c=percentage(scores.c, total_points),
        d=percentage(scores.d, total_points),
    )


def build_breakdown(scores: ScoreSet, categories: Iterable[Category] = DEFAULT_CATEGORIES) -> list[BreakdownItem]:
    """Label and color each strictly positive component, in A-D order."""

    by_key = {category.key: category for category in categories}
    items: list[BreakdownItem] = []
    for key, value in scores.items():
        if value <= 0:
            continue
        category = by_key[key]
        items.append(BreakdownItem(key=key, name=category.label, value=value, color=category.color))
    return items
