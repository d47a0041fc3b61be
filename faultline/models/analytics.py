"""Error analytics data models."""

from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel

from .failure import FailureKind, Severity


def pattern_key(kind: FailureKind, code: Optional[str]) -> str:
    """Key identifying one kind+code pattern."""
    return f"{FailureKind(kind).value}:{code or '-'}"


class ErrorPattern(BaseModel):
    """Running statistics for one failure kind+code."""

    kind: FailureKind
    code: Optional[str] = None
    occurrence_count: int = 0
    first_seen: datetime
    last_seen: datetime
    highest_severity: Severity
    recent: List[datetime] = []
    affected_subjects: Set[str] = set()
    last_alert_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return pattern_key(self.kind, self.code)


class PatternSummary(BaseModel):
    """Pattern line in an analytics report."""

    key: str
    kind: FailureKind
    code: Optional[str] = None
    count: int
    highest_severity: Severity
    affected_subjects: int = 0
    last_seen: datetime


class AnalyticsReport(BaseModel):
    """Periodic summary of failures seen since the previous report."""

    generated_at: datetime
    period_start: datetime
    total_failures: int
    distinct_types: int
    top_failures: List[PatternSummary] = []
    critical_patterns: List[PatternSummary] = []
    recommendations: List[str] = []
    alerts_raised: int = 0
