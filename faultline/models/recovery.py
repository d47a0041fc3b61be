"""Recovery result data models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class RecoveryResult(BaseModel):
    """Outcome of one recovery attempt, with optional hints for the caller."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    message: str
    data: Dict[str, Any] = {}
    strategy: Optional[str] = None
    attempted: bool = True

    @classmethod
    def succeeded(cls, message: str, **data: Any) -> "RecoveryResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, reason: str, **data: Any) -> "RecoveryResult":
        return cls(success=False, message=reason, data=data)
