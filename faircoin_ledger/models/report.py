"""CycleReport model definition"""
from datetime import datetime
from typing import Dict, Optional, Any
from pydantic import BaseModel, Field

class CycleReport(BaseModel):
    """
    Outcome of one scheduler cycle.

    Attributes:
        started_at: When the cycle began (UTC)
        finished_at: When the last job returned (UTC)
        scores: Counts from the fairness sweep
        issuance: Month and total of a completed issuance, if one ran
        proposals_resolved: Number of proposals moved out of active
        alerts_created: Fairness alerts raised from the daily snapshot
        errors: Job name to error message for every job that failed
    """
    started_at: datetime
    finished_at: Optional[datetime] = None
    scores: Dict[str, Any] = Field(default_factory=dict)
    issuance: Optional[Dict[str, Any]] = None
    proposals_resolved: int = 0
    alerts_created: int = 0
    errors: Dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors
