"""
Stage results for the linear ingestion pipeline.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar('T')


class StageStatus(str, Enum):
    OK = 'ok'
    ABSENT = 'absent'
    FAILED = 'failed'


@dataclass(frozen=True)
class StageResult(Generic[T]):
    """Outcome of one pipeline stage: a value, nothing to do, or a failure."""

    status: StageStatus
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> 'StageResult[T]':
        return cls(StageStatus.OK, value=value)

    @classmethod
    def absent(cls, reason: str) -> 'StageResult[T]':
        return cls(StageStatus.ABSENT, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> 'StageResult[T]':
        return cls(StageStatus.FAILED, reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status is StageStatus.OK

    @property
    def is_absent(self) -> bool:
        return self.status is StageStatus.ABSENT

    @property
    def is_failed(self) -> bool:
        return self.status is StageStatus.FAILED
