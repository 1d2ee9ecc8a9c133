"""
Per-case verdicts.

Every test case ends in exactly one of four verdicts:

- PASS: both implementations agree within tolerance
- FAIL: a statistic disagrees beyond tolerance
- ERROR: the harness could not obtain comparable results (process failure,
  timeout, malformed output, missing statistics)
- SKIP: the case cannot be expressed for the target engine
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .comparison import StatisticComparison


class VerdictStatus(Enum):
    """Status of a test case."""
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    SKIP = "skip"


@dataclass(frozen=True)
class Verdict:
    """Base verdict: test name plus a human-readable message."""

    name: str
    message: str

    status = None  # set by subclasses

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'name': self.name,
            'message': self.message,
        }


@dataclass(frozen=True)
class PassVerdict(Verdict):
    status = VerdictStatus.PASS


@dataclass(frozen=True)
class FailVerdict(Verdict):
    comparison: Optional[StatisticComparison] = None

    status = VerdictStatus.FAIL

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.comparison is not None:
            result['comparison'] = self.comparison.to_dict()
        return result


@dataclass(frozen=True)
class ErrorVerdict(Verdict):
    status = VerdictStatus.ERROR


@dataclass(frozen=True)
class SkipVerdict(Verdict):
    status = VerdictStatus.SKIP
