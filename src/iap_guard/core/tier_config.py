"""
구독 등급별 설정 및 소모성 아이템 지급량 관리
"""
from typing import Dict
from dataclasses import dataclass
from enum import Enum


class PremiumTier(str, Enum):
    """구독 등급"""
    BASIC = "basic"
    PLUS = "plus"
    PREMIUM = "premium"


@dataclass(frozen=True)
class TierConsumables:
    """등급별 소모성 아이템 지급량"""
    super_likes: int
    boosts: int
    rewinds: int

    def as_fields(self) -> Dict[str, int]:
        return {
            "super_likes_remaining": self.super_likes,
            "boosts_remaining": self.boosts,
            "rewinds_remaining": self.rewinds,
        }


class TierConfig:
    """등급 설정 관리자"""

    TIER_CONSUMABLES = {
        PremiumTier.BASIC: TierConsumables(super_likes=1, boosts=0, rewinds=0),
        PremiumTier.PLUS: TierConsumables(super_likes=5, boosts=1, rewinds=3),
        PremiumTier.PREMIUM: TierConsumables(super_likes=999, boosts=999, rewinds=999),
    }

    @classmethod
    def tier_for_product(cls, product_id: str) -> PremiumTier:
        """상품 ID로 등급 결정 (premium > plus > basic 순으로 매칭)"""
        normalized = (product_id or "").lower()
        if "premium" in normalized:
            return PremiumTier.PREMIUM
        if "plus" in normalized:
            return PremiumTier.PLUS
        return PremiumTier.BASIC

    @classmethod
    def get_consumables(cls, tier: PremiumTier) -> TierConsumables:
        return cls.TIER_CONSUMABLES.get(tier, cls.TIER_CONSUMABLES[PremiumTier.BASIC])
