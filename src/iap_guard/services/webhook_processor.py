"""
App Store Server Notifications V2 처리

1. signedPayload 및 내부 서명 토큰 검증 (SignatureVerifier)
2. 검증된 클레임 디코딩 (TransactionDecoder)
3. notificationUUID 기준 중복 확인
4. NotificationType 별 핸들러로 구독 상태 전이
5. 결과를 WebhookOutcome 으로 반환하고 HTTP 상태는 response_status_for 로 결정
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from iap_guard.core.base_service import BaseService
from iap_guard.core.interfaces import IAuditLog, INoticeSender, IPurchaseLedger
from iap_guard.core.models import NotificationType, PurchaseRecord, TransactionInfo, UserNotice
from iap_guard.core.tier_config import TierConfig
from iap_guard.services.entitlement_service import EntitlementService
from iap_guard.services.refund_abuse_detector import RefundAbuseDetector, RefundEvent
from iap_guard.services.signature_verifier import SignatureVerificationError, SignatureVerifier
from iap_guard.services.transaction_decoder import (
    NotificationEnvelope,
    TransactionDecodeError,
    TransactionDecoder,
)


class WebhookStatus(str, Enum):
    PROCESSED = "processed"
    NO_OP = "no_op"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class WebhookOutcome:
    status: WebhookStatus
    notification_type: Optional[str] = None
    subtype: Optional[str] = None
    notification_uuid: Optional[str] = None
    transaction_id: Optional[str] = None
    user_id: Optional[str] = None
    detail: Optional[str] = None


def response_status_for(outcome: WebhookOutcome) -> int:
    """서명 실패만 401, 예기치 못한 내부 오류만 500, 나머지는 모두 200"""
    if outcome.status is WebhookStatus.REJECTED:
        return 401
    if outcome.status is WebhookStatus.FAILED:
        return 500
    return 200


@dataclass(slots=True)
class NotificationContext:
    envelope: NotificationEnvelope
    transaction: Optional[TransactionInfo]
    purchase: Optional[PurchaseRecord]


HandlerResult = Tuple[WebhookStatus, Optional[str]]
HandlerFunc = Callable[["WebhookProcessor", NotificationContext], Awaitable[HandlerResult]]


class WebhookProcessor(BaseService):
    """구독 수명주기 알림 상태 머신"""

    def __init__(
        self,
        verifier: SignatureVerifier,
        decoder: TransactionDecoder,
        ledger: IPurchaseLedger,
        entitlements: EntitlementService,
        refund_detector: RefundAbuseDetector,
        audit_log: IAuditLog,
        notice_sender: INoticeSender,
    ):
        super().__init__(audit_log)
        self.verifier = verifier
        self.decoder = decoder
        self.ledger = ledger
        self.entitlements = entitlements
        self.refund_detector = refund_detector
        self.notice_sender = notice_sender

    async def process(self, body: bytes, headers: Optional[Mapping[str, str]] = None) -> WebhookOutcome:
        headers = headers or {}
        source = {
            "forwarded_for": headers.get("x-forwarded-for"),
            "user_agent": headers.get("user-agent"),
        }

        try:
            claims, transaction_claims, renewal_claims = self._verify(body)
        except SignatureVerificationError as e:
            self.logger.error(f"[APPLE] 서명 검증 실패 - 사유: {e.reason}, 오류: {e}, 출처: {source}")
            return WebhookOutcome(status=WebhookStatus.REJECTED, detail=e.reason)

        try:
            return await self._dispatch(claims, transaction_claims, renewal_claims)
        except Exception as e:
            self.logger.error(f"[APPLE] 알림 처리 중 오류: {e}", exc_info=True)
            return WebhookOutcome(
                status=WebhookStatus.FAILED,
                notification_type=claims.get("notificationType"),
                notification_uuid=claims.get("notificationUUID"),
                detail="internal_error",
            )

    def _verify(self, body: bytes) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """외부 봉투와 내부 서명 토큰을 모두 검증한다. 디코딩은 이후 단계에서 한다."""
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SignatureVerificationError(f"요청 본문 파싱 실패: {e}", reason="malformed_body") from e

        signed_payload = payload.get("signedPayload") if isinstance(payload, dict) else None
        claims = self.verifier.verify(signed_payload)

        data = claims.get("data") if isinstance(claims.get("data"), dict) else {}
        transaction_claims = None
        renewal_claims = None
        if data.get("signedTransactionInfo"):
            transaction_claims = self.verifier.verify(data["signedTransactionInfo"])
        if data.get("signedRenewalInfo"):
            renewal_claims = self.verifier.verify(data["signedRenewalInfo"])
        return claims, transaction_claims, renewal_claims

    async def _dispatch(
        self,
        claims: Dict[str, Any],
        transaction_claims: Optional[Dict[str, Any]],
        renewal_claims: Optional[Dict[str, Any]],
    ) -> WebhookOutcome:
        envelope = self.decoder.decode_notification(claims)
        notification_uuid = envelope.notification_uuid
        self.logger.info(
            f"[APPLE] 알림 수신 - 유형: {envelope.raw_type}, 서브타입: {envelope.subtype}, uuid: {notification_uuid}"
        )

        if notification_uuid and await self.audit_log.has_processed_notification(notification_uuid):
            self.logger.info(f"[APPLE] 중복 알림 무시: {notification_uuid}")
            return WebhookOutcome(
                status=WebhookStatus.DUPLICATE,
                notification_type=envelope.raw_type,
                subtype=envelope.subtype,
                notification_uuid=notification_uuid,
            )

        transaction: Optional[TransactionInfo] = None
        if transaction_claims is not None:
            try:
                transaction = self.decoder.decode_transaction(transaction_claims, renewal_claims)
            except TransactionDecodeError as e:
                self.logger.error(f"[APPLE] 거래 토큰 디코딩 실패 - uuid: {notification_uuid}, 오류: {e}")
                return WebhookOutcome(
                    status=WebhookStatus.IGNORED,
                    notification_type=envelope.raw_type,
                    notification_uuid=notification_uuid,
                    detail="undecodable_transaction",
                )

        purchase = None
        if transaction is not None and envelope.notification_type not in REFUND_TYPES:
            purchase = await self.refund_detector.find_purchase(
                transaction.transaction_id, transaction.original_transaction_id
            )

        ctx = NotificationContext(envelope=envelope, transaction=transaction, purchase=purchase)
        handler = HANDLER_MAP.get(envelope.notification_type, WebhookProcessor._handle_unknown)
        status, detail = await handler(self, ctx)

        outcome = WebhookOutcome(
            status=status,
            notification_type=envelope.raw_type,
            subtype=envelope.subtype,
            notification_uuid=notification_uuid,
            transaction_id=transaction.transaction_id if transaction else None,
            user_id=ctx.purchase.user_id if ctx.purchase else None,
            detail=detail,
        )

        if notification_uuid:
            await self.audit_log.record_notification(
                notification_uuid,
                status.value,
                {
                    "notification_type": envelope.raw_type,
                    "subtype": envelope.subtype,
                    "transaction_id": outcome.transaction_id,
                    "user_id": outcome.user_id,
                    "environment": envelope.environment,
                    "detail": detail,
                },
            )
        return outcome

    def _missing_purchase(self, ctx: NotificationContext) -> HandlerResult:
        tx = ctx.transaction
        self.logger.warning(
            f"[APPLE] 원장에 없는 거래 알림 - 유형: {ctx.envelope.raw_type}, "
            f"거래: {tx.transaction_id if tx else None}, 원거래: {tx.original_transaction_id if tx else None}"
        )
        return WebhookStatus.NO_OP, "unknown_transaction"

    async def _handle_subscribed(self, ctx: NotificationContext) -> HandlerResult:
        if ctx.purchase is None:
            return self._missing_purchase(ctx)
        self.logger.info(
            f"[APPLE] 신규 구독 시작 - 사용자: {ctx.purchase.user_id}, 거래: {ctx.transaction.transaction_id}"
        )
        return WebhookStatus.PROCESSED, "subscription_started"

    async def _handle_did_renew(self, ctx: NotificationContext) -> HandlerResult:
        if ctx.purchase is None:
            return self._missing_purchase(ctx)
        if ctx.purchase.refunded:
            self.logger.warning(
                f"[APPLE] 환불된 거래의 갱신 알림 무시 - 사용자: {ctx.purchase.user_id}, "
                f"거래: {ctx.transaction.transaction_id}, 원거래: {ctx.purchase.transaction_id}, "
                f"subtype: {ctx.envelope.subtype}"
            )
            return WebhookStatus.NO_OP, "refunded_transaction"
        restore_tier = None
        if ctx.envelope.subtype == "BILLING_RECOVERY":
            restore_tier = TierConfig.tier_for_product(ctx.transaction.product_id).value
        entitlement = await self.entitlements.extend_expiry(
            ctx.purchase.user_id,
            ctx.transaction.expiry_date,
            restore_tier=restore_tier,
        )
        self.logger.info(
            f"[APPLE] 구독 갱신 - 사용자: {ctx.purchase.user_id}, 거래: {ctx.transaction.transaction_id}, "
            f"만료: {entitlement.subscription_expiry_date}"
        )
        return WebhookStatus.PROCESSED, "renewed"

    async def _handle_lapse(self, ctx: NotificationContext) -> HandlerResult:
        if ctx.purchase is None:
            return self._missing_purchase(ctx)
        notification_type = ctx.envelope.notification_type
        result = await self.entitlements.clear_premium(
            ctx.purchase.user_id,
            f"{notification_type.value} for {ctx.transaction.transaction_id}",
            clear_grace_period=notification_type is NotificationType.GRACE_PERIOD_EXPIRED,
            stale_before=ctx.transaction.expiry_date,
        )
        if result is None:
            return WebhookStatus.NO_OP, "stale_notification"
        self.logger.warning(
            f"[APPLE] 프리미엄 해제 - 사용자: {ctx.purchase.user_id}, 거래: {ctx.transaction.transaction_id}, "
            f"사유: {notification_type.value}"
        )
        return WebhookStatus.PROCESSED, "premium_cleared"

    async def _handle_renewal_status(self, ctx: NotificationContext) -> HandlerResult:
        if ctx.purchase is None:
            return self._missing_purchase(ctx)
        enabled = ctx.envelope.subtype == "AUTO_RENEW_ENABLED"
        await self.entitlements.set_auto_renew(ctx.purchase.user_id, enabled)
        await self.ledger.update_auto_renew_status(ctx.purchase.transaction_id, enabled)
        self.logger.info(
            f"[APPLE] 자동 갱신 상태 변경 - 사용자: {ctx.purchase.user_id}, 거래: {ctx.transaction.transaction_id}, "
            f"자동갱신: {enabled}"
        )
        return WebhookStatus.PROCESSED, "auto_renew_enabled" if enabled else "auto_renew_disabled"

    async def _handle_refund(self, ctx: NotificationContext) -> HandlerResult:
        if ctx.transaction is None:
            self.logger.error(f"[APPLE] 환불 알림에 거래 정보가 없음 - uuid: {ctx.envelope.notification_uuid}")
            return WebhookStatus.NO_OP, "missing_transaction"

        tx = ctx.transaction
        self.logger.warning(
            f"[APPLE] 환불 알림 - 유형: {ctx.envelope.notification_type.value}, 거래: {tx.transaction_id}, "
            f"원거래: {tx.original_transaction_id}, 상품: {tx.product_id}"
        )
        result = await self.refund_detector.process_refund(
            RefundEvent(
                transaction_id=tx.transaction_id,
                original_transaction_id=tx.original_transaction_id,
                product_id=tx.product_id,
                refund_type=ctx.envelope.notification_type.value,
                refund_date=tx.revocation_date,
            )
        )
        if not result.found:
            return WebhookStatus.NO_OP, "unknown_transaction"
        # 응답에 사용자 정보를 싣기 위해 컨텍스트를 채운다
        ctx.purchase = await self.ledger.get_purchase(result.transaction_id)
        if result.suspended:
            return WebhookStatus.PROCESSED, "refunded_and_suspended"
        return WebhookStatus.PROCESSED, "refunded" if result.newly_refunded else "already_refunded"

    async def _handle_price_increase(self, ctx: NotificationContext) -> HandlerResult:
        if ctx.purchase is None:
            return self._missing_purchase(ctx)
        await self.notice_sender.send_notice(
            UserNotice(
                user_id=ctx.purchase.user_id,
                notice_type="price_increase",
                title="Subscription Price Update",
                message="The price of your subscription will increase on your next renewal.",
                data={"product_id": ctx.transaction.product_id, "subtype": ctx.envelope.subtype},
            )
        )
        self.logger.info(
            f"[APPLE] 가격 인상 안내 - 사용자: {ctx.purchase.user_id}, 거래: {ctx.transaction.transaction_id}"
        )
        return WebhookStatus.PROCESSED, "price_increase_notice"

    async def _handle_log_only(self, ctx: NotificationContext) -> HandlerResult:
        tx = ctx.transaction
        self.logger.info(
            f"[APPLE] 기록 전용 알림 - 유형: {ctx.envelope.raw_type}, 거래: {tx.transaction_id if tx else None}, "
            f"사용자: {ctx.purchase.user_id if ctx.purchase else None}"
        )
        return WebhookStatus.PROCESSED, "logged"

    async def _handle_unknown(self, ctx: NotificationContext) -> HandlerResult:
        self.logger.warning(
            f"[APPLE] 알 수 없는 알림 유형 - 유형: {ctx.envelope.raw_type}, 서브타입: {ctx.envelope.subtype}"
        )
        return WebhookStatus.IGNORED, "unrecognized_type"


REFUND_TYPES = {NotificationType.REFUND, NotificationType.REVOKE}

HANDLER_MAP: Dict[NotificationType, HandlerFunc] = {
    NotificationType.SUBSCRIBED: WebhookProcessor._handle_subscribed,
    NotificationType.DID_RENEW: WebhookProcessor._handle_did_renew,
    NotificationType.DID_FAIL_TO_RENEW: WebhookProcessor._handle_lapse,
    NotificationType.DID_CHANGE_RENEWAL_STATUS: WebhookProcessor._handle_renewal_status,
    NotificationType.EXPIRED: WebhookProcessor._handle_lapse,
    NotificationType.GRACE_PERIOD_EXPIRED: WebhookProcessor._handle_lapse,
    NotificationType.REVOKE: WebhookProcessor._handle_refund,
    NotificationType.REFUND: WebhookProcessor._handle_refund,
    NotificationType.CONSUMPTION_REQUEST: WebhookProcessor._handle_log_only,
    NotificationType.RENEWAL_EXTENDED: WebhookProcessor._handle_log_only,
    NotificationType.PRICE_INCREASE: WebhookProcessor._handle_price_increase,
    NotificationType.REFUND_DECLINED: WebhookProcessor._handle_log_only,
    NotificationType.UNKNOWN: WebhookProcessor._handle_unknown,
}

# 새 NotificationType 이 추가되면 import 시점에 바로 드러나도록 한다
_unhandled = set(NotificationType) - set(HANDLER_MAP)
if _unhandled:
    raise RuntimeError(f"처리기가 없는 알림 유형: {sorted(t.value for t in _unhandled)}")
