"""Reputation scoring: Personal and Trade Fairness Index calculation"""
from collections import Counter
from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

from faircoin_ledger.config import PFIWeights
from faircoin_ledger.models.scores import AttestationSignal, RatingSignal, PFIBreakdown, TFIBreakdown

MIN_SCORE = 0
MAX_SCORE = 100
BASELINE_SCORE = 100.0
RATING_DIMENSIONS = ('delivery', 'quality', 'transparency', 'environmental')

def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero"""
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

def clamp(value: int, low: int = MIN_SCORE, high: int = MAX_SCORE) -> int:
    return max(low, min(high, value))

class FairnessScorer:
    """Calculates PFI and TFI from snapshots of attestations and ratings"""

    def __init__(self, weights: PFIWeights = None, merchant_base_tfi: int = 30):
        self.weights = weights or PFIWeights()
        self.merchant_base_tfi = merchant_base_tfi

    def calculate_attestation_score(self, attestations: Sequence[AttestationSignal]) -> float:
        """Weighted mean of attestation values scaled to 0-100"""
        if not attestations:
            return 0.0
        weighted_sum = 0.0
        weight_total = 0.0
        for attestation in attestations:
            multiplier = self.weights.type_multiplier(attestation.type)
            weighted_sum += attestation.value * multiplier
            weight_total += multiplier
        average = weighted_sum / weight_total
        return average / 10 * 100

    def calculate_service_score(self, hours: int) -> float:
        """Community service hours scaled to 0-100"""
        cap = self.weights.service_hours_cap
        return min(max(hours, 0), cap) / cap * 100

    def calculate_pfi(self, community_service_hours: int,
                      attestations: Sequence[AttestationSignal]) -> PFIBreakdown:
        """Calculate PFI and provide breakdown"""
        attestation_score = self.calculate_attestation_score(attestations)
        service_score = self.calculate_service_score(community_service_hours)

        attestation_contribution = self.weights.attestation * attestation_score
        service_contribution = self.weights.service * service_score
        baseline_contribution = self.weights.baseline * BASELINE_SCORE

        total = attestation_contribution + service_contribution + baseline_contribution

        return PFIBreakdown(
            attestation_score=round(attestation_score, 2),
            attestation_contribution=round(attestation_contribution, 2),
            service_score=round(service_score, 2),
            service_contribution=round(service_contribution, 2),
            baseline_contribution=round(baseline_contribution, 2),
            total_attestations=len(attestations),
            community_service_hours=community_service_hours,
            attestation_counts=dict(Counter(a.type for a in attestations)),
            pfi=clamp(round_half_up(total))
        )

    def calculate_tfi(self, ratings: Sequence[RatingSignal]) -> TFIBreakdown:
        """Calculate TFI and provide per-dimension averages"""
        if not ratings:
            return TFIBreakdown(total_ratings=0, tfi=self.merchant_base_tfi)

        count = len(ratings)
        averages = {
            dimension: sum(getattr(r, dimension) for r in ratings) / count
            for dimension in RATING_DIMENSIONS
        }
        overall = sum(averages.values()) / len(RATING_DIMENSIONS)

        return TFIBreakdown(
            total_ratings=count,
            avg_delivery=round(averages['delivery'], 2),
            avg_quality=round(averages['quality'], 2),
            avg_transparency=round(averages['transparency'], 2),
            avg_environmental=round(averages['environmental'], 2),
            overall_average=round(overall, 4),
            # A rated merchant never drops below the unrated base
            tfi=clamp(round_half_up(overall * 10), self.merchant_base_tfi, MAX_SCORE)
        )
