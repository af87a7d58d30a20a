"""
구매 시점 영수증 검증 서비스

App Store 검증 → 거래 디코딩 → 상품 일치 확인 → 사기 점수 → 원장 기록(create-if-absent)
→ 권한 부여 순으로 처리한다. 원장 기록과 권한 부여는 사용자 잠금 안에서 실행된다.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from iap_guard.core.base_service import BaseService
from iap_guard.core.config import settings
from iap_guard.core.interfaces import IAuditLog, IPurchaseLedger
from iap_guard.core.models import (
    DeviceSignals,
    FlaggedTransaction,
    FraudLogEntry,
    PurchaseRecord,
    Severity,
    TransactionInfo,
    utcnow,
)
from iap_guard.core.responses import (
    DuplicateReceiptException,
    ExternalServiceException,
    FraudRejectedException,
    InvalidReceiptException,
    ProductMismatchException,
)
from iap_guard.core.tier_config import TierConfig
from iap_guard.services.app_store_client import AppStoreAPIError, AppStoreClient
from iap_guard.services.entitlement_service import EntitlementService
from iap_guard.services.fraud_scorer import FraudAssessment, FraudScorer, FraudSignals
from iap_guard.services.transaction_decoder import TransactionDecodeError, TransactionDecoder


@dataclass(frozen=True)
class ValidationResult:
    purchase_id: str
    transaction_id: str
    product_id: str
    premium_tier: str
    expiry_date: Optional[datetime]
    fraud_score: int
    flagged_for_review: bool = False


class ReceiptValidator(BaseService):
    """영수증 검증 오케스트레이터"""

    def __init__(
        self,
        app_store_client: AppStoreClient,
        decoder: TransactionDecoder,
        scorer: FraudScorer,
        ledger: IPurchaseLedger,
        entitlements: EntitlementService,
        audit_log: IAuditLog,
        velocity_window_hours: Optional[int] = None,
    ):
        super().__init__(audit_log)
        self.app_store_client = app_store_client
        self.decoder = decoder
        self.scorer = scorer
        self.ledger = ledger
        self.entitlements = entitlements
        self.velocity_window = timedelta(
            hours=velocity_window_hours if velocity_window_hours is not None else settings.FRAUD_VELOCITY_WINDOW_HOURS
        )

    async def validate(
        self,
        user_id: str,
        receipt_data: str,
        claimed_product_id: str,
        device: Optional[DeviceSignals] = None,
    ) -> ValidationResult:
        device = device or DeviceSignals()
        transaction = await self._verify_with_app_store(user_id, receipt_data)

        if transaction.product_id != claimed_product_id:
            self.logger.warning(
                f"상품 불일치 거절 - 사용자: {user_id}, 거래: {transaction.transaction_id}, "
                f"요청: {claimed_product_id}, 영수증: {transaction.product_id}"
            )
            raise ProductMismatchException(claimed_product_id, transaction.product_id)

        assessment = await self.assess(user_id, transaction, device)
        score = assessment.score
        if self.scorer.should_reject(score):
            self.logger.error(
                f"사기 점수 초과 거절 - 사용자: {user_id}, 거래: {transaction.transaction_id}, 점수: {score}"
            )
            await self.audit_log.log_fraud_event(
                FraudLogEntry(
                    user_id=user_id,
                    event_type="high_fraud_score",
                    details={
                        "transaction_id": transaction.transaction_id,
                        "product_id": transaction.product_id,
                        "fraud_score": score,
                        "components": assessment.components,
                    },
                    severity=Severity.CRITICAL,
                )
            )
            raise FraudRejectedException(score)

        record = PurchaseRecord(
            transaction_id=transaction.transaction_id,
            original_transaction_id=transaction.original_transaction_id,
            user_id=user_id,
            product_id=transaction.product_id,
            purchase_date=transaction.purchase_date or utcnow(),
            expiry_date=transaction.expiry_date,
            is_subscription=transaction.is_subscription,
            is_promotional=transaction.is_promotional,
            promotional_offer_id=transaction.promotional_offer_id,
            is_trial_period=transaction.is_trial_period,
            auto_renew_status=transaction.auto_renew_status,
            fraud_score=score,
            jailbreak_risk=device.jailbreak_risk,
            device_id=device.device_id,
        )

        async with self.entitlements.locks.hold(user_id):
            created = await self.ledger.create_purchase_if_absent(record)
            if not created:
                await self._complete_interrupted_purchase(user_id, transaction)
                self.logger.info(
                    f"중복 영수증 거절 - 사용자: {user_id}, 거래: {transaction.transaction_id}"
                )
                raise DuplicateReceiptException(transaction.transaction_id)
            await self.entitlements.grant_for_transaction(user_id, transaction)

        flagged = await self._flag_if_needed(user_id, transaction.transaction_id, score)

        self.logger.info(
            f"영수증 검증 완료 - 사용자: {user_id}, 거래: {transaction.transaction_id}, "
            f"상품: {transaction.product_id}, 점수: {score}"
        )
        return ValidationResult(
            purchase_id=record.purchase_id,
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
            premium_tier=TierConfig.tier_for_product(transaction.product_id).value,
            expiry_date=transaction.expiry_date,
            fraud_score=score,
            flagged_for_review=flagged,
        )

    async def _complete_interrupted_purchase(self, user_id: str, transaction: TransactionInfo) -> None:
        """이전 요청이 원장 기록 후 중단된 경우 권한 부여와 검토 등록을 마저 실행한다.

        권한 부여 기록(entitlement_grants)과 검토 등록 모두 create-if-absent 이므로
        이미 완료된 요청에 대해서는 아무 상태도 바꾸지 않는다.
        """
        existing = await self.ledger.get_purchase(transaction.transaction_id)
        if existing is None or existing.user_id != user_id or existing.refunded:
            return
        granted = await self.entitlements.grant_for_transaction(user_id, transaction)
        if granted:
            self.logger.warning(
                f"중단된 권한 부여 복구 - 사용자: {user_id}, 거래: {transaction.transaction_id}"
            )
        await self._flag_if_needed(user_id, transaction.transaction_id, existing.fraud_score)

    async def _flag_if_needed(self, user_id: str, transaction_id: str, score: int) -> bool:
        if not self.scorer.needs_review(score):
            return False
        created = await self.audit_log.create_flagged_transaction_if_absent(
            FlaggedTransaction(transaction_id=transaction_id, user_id=user_id, fraud_score=score)
        )
        if created:
            self.logger.warning(f"검토 대상 거래 등록 - 사용자: {user_id}, 거래: {transaction_id}, 점수: {score}")
        return True

    async def assess(self, user_id: str, transaction: TransactionInfo, device: DeviceSignals) -> FraudAssessment:
        """원장과 감사 로그에서 신호를 모아 사기 점수를 계산한다."""
        is_trial_or_promo = (
            transaction.is_trial_period or transaction.is_in_intro_offer_period or transaction.is_promotional
        )
        other_trial_accounts = 0
        if is_trial_or_promo and device.device_id:
            other_trial_accounts = await self.ledger.count_trial_accounts_for_device(device.device_id, user_id)

        signals = FraudSignals(
            jailbreak_risk=device.jailbreak_risk,
            is_trial_or_promotional=is_trial_or_promo,
            other_trial_accounts_on_device=other_trial_accounts,
            refund_count=await self.ledger.count_refunded_purchases(user_id),
            recent_purchase_count=await self.ledger.count_purchases_since(user_id, utcnow() - self.velocity_window),
            prior_fraud_events=await self.audit_log.count_fraud_events(user_id),
        )
        return self.scorer.score(signals)

    async def _verify_with_app_store(self, user_id: str, receipt_data: str) -> TransactionInfo:
        if not receipt_data:
            raise InvalidReceiptException("영수증 데이터가 비어 있습니다")

        try:
            response = await self.app_store_client.verify_receipt(receipt_data)
        except AppStoreAPIError as e:
            self.logger.error(f"App Store 검증 호출 실패 - 사용자: {user_id}, 코드: {e.code}, 오류: {e}")
            raise ExternalServiceException("App Store", str(e)) from e

        status = response.get("status")
        if status != AppStoreClient.STATUS_OK:
            reason = AppStoreClient.describe_status(status)
            self.logger.warning(f"영수증 검증 실패 - 사용자: {user_id}, status: {status}, 사유: {reason}")
            raise InvalidReceiptException(reason, apple_status=status)

        try:
            return self.decoder.decode_receipt(response)
        except TransactionDecodeError as e:
            self.logger.warning(f"영수증 디코딩 실패 - 사용자: {user_id}, 오류: {e}")
            raise InvalidReceiptException(str(e)) from e
