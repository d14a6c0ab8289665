from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .quiz import ScoreSet, ValidQuiz
from .scoring import PercentageSet, calculate_percentages


TIMESTAMP_FORMAT = "%d/%m/%Y, %H:%M:%S"

_id_lock = threading.Lock()
_last_id = 0


def new_record_id() -> int:
    """Millisecond creation time, bumped so ids never repeat within a process."""

    global _last_id
    with _id_lock:
        candidate = time.time_ns() // 1_000_000
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
        return candidate


def format_timestamp(moment: datetime | None = None) -> str:
    return (moment or datetime.now()).strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class ResultRecord:
    id: int
    name: str
    scores: ScoreSet
    percentages: PercentageSet
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "scores": self.scores.to_dict(),
            "percentages": self.percentages.to_dict(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ResultRecord":
        return cls(
            id=int(payload["id"]),
            name=str(payload["name"]),
            scores=ScoreSet.from_dict(payload["scores"]),
            percentages=PercentageSet.from_dict(payload["percentages"]),
            timestamp=str(payload["timestamp"]),
        )


def create_record(quiz: ValidQuiz, *, total_points: int, moment: datetime | None = None) -> ResultRecord:
    return ResultRecord(
        id=new_record_id(),
        name=quiz.name,
        scores=quiz.scores,
        percentages=calculate_percentages(quiz.scores, total_points),
        timestamp=format_timestamp(moment),
    )
