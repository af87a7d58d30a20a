"""
환불 남용 탐지 서비스

환불/취소(REVOKE) 이벤트를 받으면 같은 처리 안에서 즉시 프리미엄을 회수하고,
사용자 누적 환불 횟수에 따라 사기 로그 / 관리자 경보 / 계정 정지를 수행한다.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from iap_guard.core.base_service import BaseService
from iap_guard.core.config import settings
from iap_guard.core.interfaces import IAuditLog, INoticeSender, IPurchaseLedger
from iap_guard.core.models import (
    AdminAlert,
    FraudLogEntry,
    PurchaseRecord,
    RefundHistoryEntry,
    Severity,
    UserNotice,
    utcnow,
)
from iap_guard.services.entitlement_service import EntitlementService


REFUND_ABUSE_REASON = "refund abuse"


@dataclass(frozen=True)
class RefundEvent:
    transaction_id: str
    original_transaction_id: Optional[str]
    product_id: Optional[str]
    refund_type: str = "REFUND"
    refund_date: Optional[datetime] = None


@dataclass(frozen=True)
class RefundOutcome:
    found: bool
    user_id: Optional[str] = None
    transaction_id: Optional[str] = None
    newly_refunded: bool = False
    refund_count: int = 0
    flagged: bool = False
    suspended: bool = False


class RefundAbuseDetector(BaseService):
    """환불 이력 집계 및 남용 대응"""

    def __init__(
        self,
        ledger: IPurchaseLedger,
        entitlements: EntitlementService,
        audit_log: IAuditLog,
        notice_sender: INoticeSender,
        alert_threshold: Optional[int] = None,
        suspend_threshold: Optional[int] = None,
    ):
        super().__init__(audit_log)
        self.ledger = ledger
        self.entitlements = entitlements
        self.notice_sender = notice_sender
        self.alert_threshold = alert_threshold if alert_threshold is not None else settings.REFUND_ALERT_THRESHOLD
        self.suspend_threshold = (
            suspend_threshold if suspend_threshold is not None else settings.REFUND_SUSPEND_THRESHOLD
        )

    async def find_purchase(self, transaction_id: str, original_transaction_id: Optional[str]) -> Optional[PurchaseRecord]:
        """transactionId 로 찾고, 없으면 originalTransactionId 로 찾는다."""
        record = await self.ledger.get_purchase(transaction_id)
        if record is None and original_transaction_id:
            record = await self.ledger.get_purchase_by_original_transaction_id(original_transaction_id)
        return record

    async def process_refund(self, event: RefundEvent) -> RefundOutcome:
        record = await self.find_purchase(event.transaction_id, event.original_transaction_id)
        if record is None:
            self.logger.warning(
                f"[APPLE] 환불 대상 거래를 찾을 수 없음 - 거래: {event.transaction_id}, "
                f"원거래: {event.original_transaction_id}"
            )
            await self.audit_log.log_system_event(
                event_type="refund_unknown_transaction",
                event_data={
                    "transaction_id": event.transaction_id,
                    "original_transaction_id": event.original_transaction_id,
                    "refund_type": event.refund_type,
                },
            )
            return RefundOutcome(found=False, transaction_id=event.transaction_id)

        user_id = record.user_id
        product_id = record.product_id or event.product_id

        async with self.entitlements.locks.hold(user_id):
            newly_refunded = await self.ledger.mark_refunded(
                record.transaction_id,
                event.refund_type,
                event.refund_date or utcnow(),
            )
            await self.entitlements.clear_premium(
                user_id,
                f"{event.refund_type.lower()} of {record.transaction_id}",
                clear_expiry=True,
            )

            if not newly_refunded:
                self.logger.info(
                    f"이미 환불 처리된 거래 - 사용자: {user_id}, 거래: {record.transaction_id}"
                )
                return RefundOutcome(found=True, user_id=user_id, transaction_id=record.transaction_id)

            await self.audit_log.append_refund_history(
                RefundHistoryEntry(user_id=user_id, transaction_id=record.transaction_id, product_id=product_id)
            )
            refund_count = await self.ledger.count_refunded_purchases(user_id)
            self.logger.warning(
                f"환불로 프리미엄 회수 - 사용자: {user_id}, 거래: {record.transaction_id}, 누적 환불: {refund_count}"
            )

            flagged = refund_count > self.alert_threshold
            suspended = refund_count > self.suspend_threshold
            if flagged:
                await self._escalate(user_id, record.transaction_id, product_id, refund_count)
            if suspended:
                await self.entitlements.suspend(user_id, REFUND_ABUSE_REASON)
                self.logger.error(
                    f"환불 남용으로 자동 정지 - 사용자: {user_id}, 누적 환불: {refund_count}"
                )

        await self._send_refund_notice(user_id, product_id)
        return RefundOutcome(
            found=True,
            user_id=user_id,
            transaction_id=record.transaction_id,
            newly_refunded=True,
            refund_count=refund_count,
            flagged=flagged,
            suspended=suspended,
        )

    async def _escalate(self, user_id: str, transaction_id: str, product_id: str, refund_count: int) -> None:
        self.logger.error(f"다중 환불 감지 - 사용자: {user_id}, 누적 환불: {refund_count}")
        await self.audit_log.log_fraud_event(
            FraudLogEntry(
                user_id=user_id,
                event_type="multiple_refunds",
                details={
                    "refund_count": refund_count,
                    "latest_transaction_id": transaction_id,
                    "product_id": product_id,
                },
                severity=Severity.CRITICAL,
            )
        )
        await self.audit_log.create_admin_alert(
            AdminAlert(
                alert_type="refund_abuse_detected",
                details={
                    "user_id": user_id,
                    "refund_count": refund_count,
                    "transaction_id": transaction_id,
                },
                priority=Severity.CRITICAL,
            )
        )

    async def _send_refund_notice(self, user_id: str, product_id: str) -> None:
        try:
            await self.notice_sender.send_notice(
                UserNotice(
                    user_id=user_id,
                    notice_type="refund_processed",
                    title="Subscription Refunded",
                    message="Your subscription has been refunded and premium access has been revoked.",
                    data={"product_id": product_id},
                )
            )
        except Exception as e:
            self.logger.error(f"환불 알림 발송 실패 - 사용자: {user_id}, 오류: {e}")
