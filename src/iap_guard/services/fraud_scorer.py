"""거래 사기 점수 계산

모든 신호는 독립적으로 0 이상 가중치 이하의 기여도를 가지며 합산 후 0~100 으로
제한한다. 각 기여도는 해당 신호에 대해 단조 증가하므로 합산 점수도 단조 증가한다.
외부 호출 없이 입력만으로 결정되는 순수 계산이다.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from iap_guard.core.config import Settings, settings as default_settings


@dataclass(frozen=True)
class FraudWeights:
    """신호별 최대 기여도와 포화 지점"""

    device: float = 40.0
    promo_abuse: float = 20.0
    refunds: float = 20.0
    velocity: float = 20.0
    prior_fraud: float = 10.0
    refund_saturation: int = 4
    velocity_baseline: int = 3
    velocity_saturation: int = 3
    promo_abuse_min_accounts: int = 1
    prior_fraud_saturation: int = 2

    @classmethod
    def from_settings(cls, config: Settings) -> "FraudWeights":
        return cls(
            device=config.FRAUD_WEIGHT_DEVICE,
            promo_abuse=config.FRAUD_WEIGHT_PROMO_ABUSE,
            refunds=config.FRAUD_WEIGHT_REFUNDS,
            velocity=config.FRAUD_WEIGHT_VELOCITY,
            prior_fraud=config.FRAUD_WEIGHT_PRIOR_FRAUD,
            refund_saturation=config.FRAUD_REFUND_SATURATION,
            velocity_baseline=config.FRAUD_VELOCITY_BASELINE,
            velocity_saturation=config.FRAUD_VELOCITY_SATURATION,
            promo_abuse_min_accounts=config.FRAUD_PROMO_ABUSE_MIN_ACCOUNTS,
            prior_fraud_saturation=config.FRAUD_PRIOR_FRAUD_SATURATION,
        )


@dataclass(frozen=True)
class FraudSignals:
    """점수 계산 입력 신호"""

    jailbreak_risk: float = 0.0
    is_trial_or_promotional: bool = False
    other_trial_accounts_on_device: int = 0
    refund_count: int = 0
    recent_purchase_count: int = 0
    prior_fraud_events: int = 0


@dataclass(frozen=True)
class FraudAssessment:
    score: int
    components: Dict[str, float] = field(default_factory=dict)


def _saturating(count: int, saturation: int) -> float:
    if saturation <= 0:
        return 1.0 if count > 0 else 0.0
    return min(max(count, 0), saturation) / saturation


class FraudScorer:
    """결정적 복합 사기 점수 계산기"""

    def __init__(
        self,
        weights: Optional[FraudWeights] = None,
        review_threshold: Optional[int] = None,
        reject_threshold: Optional[int] = None,
    ):
        self.weights = weights or FraudWeights.from_settings(default_settings)
        self.review_threshold = (
            review_threshold if review_threshold is not None else default_settings.FRAUD_REVIEW_THRESHOLD
        )
        self.reject_threshold = (
            reject_threshold if reject_threshold is not None else default_settings.FRAUD_REJECT_THRESHOLD
        )

    def score(self, signals: FraudSignals) -> FraudAssessment:
        w = self.weights
        risk = min(max(float(signals.jailbreak_risk or 0.0), 0.0), 1.0)

        promo_abuse = (
            signals.is_trial_or_promotional
            and signals.other_trial_accounts_on_device >= w.promo_abuse_min_accounts
        )
        velocity_excess = max(0, signals.recent_purchase_count - w.velocity_baseline)

        components = {
            "device": risk * w.device,
            "promo_abuse": w.promo_abuse if promo_abuse else 0.0,
            "refunds": _saturating(signals.refund_count, w.refund_saturation) * w.refunds,
            "velocity": _saturating(velocity_excess, w.velocity_saturation) * w.velocity,
            "prior_fraud": _saturating(signals.prior_fraud_events, w.prior_fraud_saturation) * w.prior_fraud,
        }

        total = min(max(sum(components.values()), 0.0), 100.0)
        return FraudAssessment(score=int(round(total)), components=components)

    def should_reject(self, score: int) -> bool:
        return score >= self.reject_threshold

    def needs_review(self, score: int) -> bool:
        return self.review_threshold <= score < self.reject_threshold
