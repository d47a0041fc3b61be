"""Interception outcome and user notification data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .failure import Failure, Severity
from .recovery import RecoveryResult


class InterceptionStage(str, Enum):
    """Stages a captured failure passes through."""

    CAPTURED = "captured"
    NORMALIZED = "normalized"
    LOGGED = "logged"
    RECOVERY_ATTEMPTED = "recovery_attempted"
    REPORTED = "reported"
    USER_NOTIFIED = "user_notified"
    SUPPRESSED = "suppressed"


class UserNotification(BaseModel):
    """What the UI layer is asked to surface for a failure."""

    model_config = ConfigDict(frozen=True)

    failure_id: str
    message: str
    severity: Severity
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InterceptionOutcome(BaseModel):
    """Result of running one failure through the interceptor."""

    failure: Failure
    stages: List[InterceptionStage] = []
    recovery: Optional[RecoveryResult] = None
    reported: bool = False
    notified: bool = False
    state_preserved: bool = False

    @property
    def recovered(self) -> bool:
        return self.recovery is not None and self.recovery.success

    @property
    def final_stage(self) -> InterceptionStage:
        return self.stages[-1]
