#app/models/enums.py
from __future__ import annotations
from enum import Enum, IntEnum
from typing import Optional


class ChainStatus(IntEnum):
    # ordinals are the registry's uint8 status values; do not renumber
    CREATED = 0
    DISTRIBUTED = 1
    CLAIMED = 2
    TRANSFERRED = 3
    FLAGGED = 4
    REVOKED = 5

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @property
    def invalidates(self) -> bool:
        return self in (ChainStatus.FLAGGED, ChainStatus.REVOKED)

    @classmethod
    def parse(cls, raw: Optional[int]) -> Optional["ChainStatus"]:
        if raw is None:
            return None
        try:
            return cls(int(raw))
        except ValueError:
            return None


def chain_status_label(raw: Optional[int]) -> str:
    status = ChainStatus.parse(raw)
    return status.label if status is not None else "Unknown"


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @classmethod
    def from_score(cls, score: int) -> "RiskLevel":
        if score >= 70:
            return cls.critical
        if score >= 40:
            return cls.high
        if score >= 20:
            return cls.medium
        return cls.low


class FlagSeverity(str, Enum):
    info = "info"
    warning = "warning"
    danger = "danger"


class QuestionType(str, Enum):
    first_scan = "first_scan"
    second_scan = "second_scan"
    third_scan = "third_scan"
    no_question = "no_question"
