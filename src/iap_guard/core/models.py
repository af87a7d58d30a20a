"""
구매 무결성 도메인 모델

원장, 권한 투영, 감사 로그 레코드는 저장소와 서비스 사이에서 주고받는
불변에 가까운 데이터 클래스로 표현한다. 저장소 계층은 이 객체를
테이블 행(dict)으로 직렬화한다.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationType(str, Enum):
    """App Store Server Notification V2 유형"""
    SUBSCRIBED = "SUBSCRIBED"
    DID_RENEW = "DID_RENEW"
    DID_FAIL_TO_RENEW = "DID_FAIL_TO_RENEW"
    DID_CHANGE_RENEWAL_STATUS = "DID_CHANGE_RENEWAL_STATUS"
    EXPIRED = "EXPIRED"
    GRACE_PERIOD_EXPIRED = "GRACE_PERIOD_EXPIRED"
    REVOKE = "REVOKE"
    REFUND = "REFUND"
    CONSUMPTION_REQUEST = "CONSUMPTION_REQUEST"
    RENEWAL_EXTENDED = "RENEWAL_EXTENDED"
    PRICE_INCREASE = "PRICE_INCREASE"
    REFUND_DECLINED = "REFUND_DECLINED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "NotificationType":
        normalized = (raw or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class TransactionInfo:
    """영수증 또는 서명된 거래 토큰에서 추출한 거래 정보"""

    transaction_id: str
    original_transaction_id: Optional[str]
    product_id: str
    purchase_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    is_subscription: bool = False
    is_promotional: bool = False
    promotional_offer_id: Optional[str] = None
    is_trial_period: bool = False
    is_in_intro_offer_period: bool = False
    auto_renew_status: bool = False
    revocation_date: Optional[datetime] = None
    environment: Optional[str] = None
    bundle_id: Optional[str] = None


@dataclass(frozen=True)
class DeviceSignals:
    """클라이언트가 전달한 기기 무결성 신호"""

    jailbreak_risk: float = 0.0
    device_id: Optional[str] = None


@dataclass
class PurchaseRecord:
    transaction_id: str
    original_transaction_id: Optional[str]
    user_id: str
    product_id: str
    purchase_date: datetime
    expiry_date: Optional[datetime] = None
    is_subscription: bool = False
    is_promotional: bool = False
    promotional_offer_id: Optional[str] = None
    is_trial_period: bool = False
    auto_renew_status: bool = False
    validated: bool = True
    refunded: bool = False
    refund_date: Optional[datetime] = None
    refund_type: Optional[str] = None
    fraud_score: int = 0
    jailbreak_risk: float = 0.0
    device_id: Optional[str] = None
    purchase_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UserEntitlement:
    """사용자 레코드의 프리미엄 권한 투영"""

    user_id: str
    is_premium: bool = False
    premium_tier: Optional[str] = None
    subscription_expiry_date: Optional[datetime] = None
    auto_renew_enabled: bool = False
    in_grace_period: bool = False
    suspended: bool = False
    suspension_reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    consumables: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FraudLogEntry:
    user_id: str
    event_type: str
    details: Dict[str, Any]
    severity: Severity
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class RefundHistoryEntry:
    user_id: str
    transaction_id: str
    product_id: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class FlaggedTransaction:
    transaction_id: str
    user_id: str
    fraud_score: int
    reviewed: bool = False
    decision: Optional[ReviewDecision] = None
    admin_note: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AdminAlert:
    alert_type: str
    details: Dict[str, Any]
    priority: Severity
    acknowledged: bool = False
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class UserNotice:
    """사용자에게 노출되는 알림 레코드"""

    user_id: str
    notice_type: str
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
