"""Domain models for reputation scoring"""
from dataclasses import dataclass, field
from typing import Dict, Optional

@dataclass
class AttestationSignal:
    """Verified attestation as seen by the scorer"""
    type: str
    value: int

@dataclass
class RatingSignal:
    """Merchant rating as seen by the scorer"""
    delivery: int
    quality: int
    transparency: int
    environmental: int

@dataclass
class PFIBreakdown:
    """Component contributions of a Personal Fairness Index"""
    attestation_score: float
    attestation_contribution: float
    service_score: float
    service_contribution: float
    baseline_contribution: float
    total_attestations: int
    community_service_hours: int
    attestation_counts: Dict[str, int] = field(default_factory=dict)
    pfi: int = 0

@dataclass
class TFIBreakdown:
    """Dimension averages behind a Trade Fairness Index"""
    total_ratings: int
    avg_delivery: Optional[float] = None
    avg_quality: Optional[float] = None
    avg_transparency: Optional[float] = None
    avg_environmental: Optional[float] = None
    overall_average: Optional[float] = None
    tfi: int = 0

@dataclass
class ScoreUpdateSummary:
    """Outcome of a full score sweep"""
    pfi_updated: int = 0
    tfi_updated: int = 0
    skipped_admins: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
