"""거래 정보 디코더

서명 검증과 분리된 순수 디코딩 단계. 호출자는 디코딩 전에 SignatureVerifier 로
토큰을 검증해야 한다. 레거시 verifyReceipt 응답도 같은 TransactionInfo 로 변환한다.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from iap_guard.core.models import NotificationType, TransactionInfo


SUBSCRIPTION_TYPE = "Auto-Renewable Subscription"

# App Store Server API offerType
OFFER_TYPE_INTRODUCTORY = 1
OFFER_TYPE_PROMOTIONAL = 2
OFFER_TYPE_OFFER_CODE = 3


class TransactionDecodeError(ValueError):
    """거래 토큰 또는 영수증 응답을 해석할 수 없음"""


@dataclass(frozen=True)
class NotificationEnvelope:
    """signedPayload 를 풀어낸 알림 봉투"""

    notification_type: NotificationType
    raw_type: Optional[str]
    subtype: Optional[str]
    notification_uuid: Optional[str]
    signed_transaction_info: Optional[str]
    signed_renewal_info: Optional[str]
    environment: Optional[str] = None
    bundle_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


def _from_millis(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError) as exc:
        raise TransactionDecodeError(f"잘못된 타임스탬프: {value}") from exc


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return bool(value)


class TransactionDecoder:
    """서명 토큰 / 영수증 응답 → TransactionInfo"""

    def decode_notification(self, claims: Dict[str, Any]) -> NotificationEnvelope:
        """검증된 signedPayload 클레임에서 알림 봉투를 만든다."""

        data = claims.get("data") if isinstance(claims.get("data"), dict) else {}
        raw_type = claims.get("notificationType")
        return NotificationEnvelope(
            notification_type=NotificationType.parse(raw_type),
            raw_type=raw_type,
            subtype=claims.get("subtype"),
            notification_uuid=claims.get("notificationUUID"),
            signed_transaction_info=data.get("signedTransactionInfo"),
            signed_renewal_info=data.get("signedRenewalInfo"),
            environment=data.get("environment"),
            bundle_id=data.get("bundleId"),
            data=data,
        )

    def decode_transaction(
        self,
        claims: Dict[str, Any],
        renewal_claims: Optional[Dict[str, Any]] = None,
    ) -> TransactionInfo:
        """JWSTransactionDecodedPayload 클레임 → TransactionInfo"""

        transaction_id = claims.get("transactionId")
        product_id = claims.get("productId")
        if not transaction_id or not product_id:
            raise TransactionDecodeError("transactionId 또는 productId 가 없습니다")

        offer_type = claims.get("offerType")
        offer_discount = claims.get("offerDiscountType")
        is_intro = offer_type == OFFER_TYPE_INTRODUCTORY
        is_trial = offer_discount == "FREE_TRIAL" or (is_intro and offer_discount is None)
        is_promotional = offer_type in (OFFER_TYPE_PROMOTIONAL, OFFER_TYPE_OFFER_CODE)

        auto_renew = False
        if renewal_claims:
            auto_renew = renewal_claims.get("autoRenewStatus") == 1

        return TransactionInfo(
            transaction_id=str(transaction_id),
            original_transaction_id=str(claims.get("originalTransactionId") or transaction_id),
            product_id=str(product_id),
            purchase_date=_from_millis(claims.get("purchaseDate")),
            expiry_date=_from_millis(claims.get("expiresDate")),
            is_subscription=claims.get("type") == SUBSCRIPTION_TYPE or claims.get("expiresDate") is not None,
            is_promotional=is_promotional,
            promotional_offer_id=claims.get("offerIdentifier") if is_promotional else None,
            is_trial_period=is_trial,
            is_in_intro_offer_period=is_intro,
            auto_renew_status=auto_renew,
            revocation_date=_from_millis(claims.get("revocationDate")),
            environment=claims.get("environment"),
            bundle_id=claims.get("bundleId"),
        )

    def decode_receipt(self, response: Dict[str, Any]) -> TransactionInfo:
        """verifyReceipt 응답에서 가장 최근 거래를 추출한다."""

        receipt = response.get("receipt") if isinstance(response.get("receipt"), dict) else {}
        entries: List[Dict[str, Any]] = response.get("latest_receipt_info") or receipt.get("in_app") or []
        if not entries:
            raise TransactionDecodeError("영수증에 거래 정보가 없습니다")

        try:
            latest = max(entries, key=lambda item: int(item.get("purchase_date_ms") or 0))
        except (TypeError, ValueError) as exc:
            raise TransactionDecodeError("purchase_date_ms 를 해석할 수 없습니다") from exc
        transaction_id = latest.get("transaction_id")
        product_id = latest.get("product_id")
        if not transaction_id or not product_id:
            raise TransactionDecodeError("transaction_id 또는 product_id 가 없습니다")

        original_id = latest.get("original_transaction_id") or transaction_id
        auto_renew = False
        for pending in response.get("pending_renewal_info") or []:
            if pending.get("original_transaction_id") == original_id:
                auto_renew = str(pending.get("auto_renew_status")) == "1"
                break

        promotional_offer_id = latest.get("promotional_offer_id") or latest.get("offer_code_ref_name")
        return TransactionInfo(
            transaction_id=str(transaction_id),
            original_transaction_id=str(original_id),
            product_id=str(product_id),
            purchase_date=_from_millis(latest.get("purchase_date_ms")),
            expiry_date=_from_millis(latest.get("expires_date_ms")),
            is_subscription=latest.get("expires_date_ms") is not None,
            is_promotional=bool(promotional_offer_id),
            promotional_offer_id=promotional_offer_id,
            is_trial_period=_as_bool(latest.get("is_trial_period")),
            is_in_intro_offer_period=_as_bool(latest.get("is_in_intro_offer_period")),
            auto_renew_status=auto_renew,
            revocation_date=_from_millis(latest.get("cancellation_date_ms")),
            environment=response.get("environment"),
            bundle_id=receipt.get("bundle_id"),
        )
