"""
사용자 프리미엄 권한 갱신 서비스

UserEntitlement 의 isPremium / suspended 를 바꾸는 유일한 경로. 모든 변경은
사용자별 잠금 안에서 읽고-수정하고-쓴다.
"""
from datetime import datetime
from typing import Optional

from iap_guard.core.base_service import BaseService
from iap_guard.core.interfaces import IAuditLog, IEntitlementStore
from iap_guard.core.locks import UserLockRegistry
from iap_guard.core.models import TransactionInfo, UserEntitlement, utcnow
from iap_guard.core.tier_config import TierConfig


class EntitlementService(BaseService):
    """등급 기반 권한 및 소모성 아이템 지급"""

    def __init__(
        self,
        entitlement_store: IEntitlementStore,
        audit_log: IAuditLog,
        locks: UserLockRegistry,
    ):
        super().__init__(audit_log)
        self.entitlement_store = entitlement_store
        self.locks = locks

    async def grant_for_transaction(self, user_id: str, transaction: TransactionInfo) -> bool:
        """거래에 대한 권한 부여. 같은 거래로 두 번 부여하지 않는다.

        Returns:
            bool: 이번 호출에서 실제로 부여했으면 True
        """
        # 부여 기록은 권한 저장이 성공한 뒤에만 남긴다
        async with self.locks.hold(user_id):
            if await self.entitlement_store.has_grant(user_id, transaction.transaction_id):
                self.logger.info(
                    f"이미 부여된 거래 - 사용자: {user_id}, 거래: {transaction.transaction_id}"
                )
                return False

            tier = TierConfig.tier_for_product(transaction.product_id)
            entitlement = await self.entitlement_store.get_entitlement(user_id)
            entitlement.is_premium = True
            entitlement.premium_tier = tier.value
            entitlement.in_grace_period = False
            entitlement.auto_renew_enabled = transaction.auto_renew_status
            if transaction.expiry_date is not None:
                entitlement.subscription_expiry_date = transaction.expiry_date
            entitlement.consumables = TierConfig.get_consumables(tier).as_fields()
            await self.entitlement_store.save_entitlement(entitlement)
            await self.entitlement_store.record_grant_if_absent(user_id, transaction.transaction_id)

        self.logger.info(
            f"권한 부여 - 사용자: {user_id}, 거래: {transaction.transaction_id}, 등급: {tier.value}"
        )
        return True

    async def extend_expiry(
        self,
        user_id: str,
        new_expiry: Optional[datetime],
        *,
        restore_tier: Optional[str] = None,
    ) -> UserEntitlement:
        """구독 만료일 연장. 늦게 도착한 이전 갱신으로 만료일이 줄어들지 않는다."""
        async with self.locks.hold(user_id):
            entitlement = await self.entitlement_store.get_entitlement(user_id)
            current = entitlement.subscription_expiry_date
            if new_expiry is not None and (current is None or new_expiry > current):
                entitlement.subscription_expiry_date = new_expiry

            if restore_tier and not entitlement.is_premium and not entitlement.suspended:
                entitlement.is_premium = True
                entitlement.premium_tier = restore_tier
                entitlement.in_grace_period = False

            return await self.entitlement_store.save_entitlement(entitlement)

    async def clear_premium(
        self,
        user_id: str,
        reason: str,
        *,
        clear_grace_period: bool = False,
        clear_expiry: bool = False,
        stale_before: Optional[datetime] = None,
    ) -> Optional[UserEntitlement]:
        """프리미엄 권한 해제

        stale_before 가 주어지고 현재 만료일이 그보다 뒤라면 더 최근 갱신이 이미 반영된
        것이므로 변경하지 않고 None 을 반환한다.
        """
        async with self.locks.hold(user_id):
            entitlement = await self.entitlement_store.get_entitlement(user_id)
            current = entitlement.subscription_expiry_date
            if stale_before is not None and current is not None and current > stale_before:
                self.logger.info(
                    f"지난 알림으로 판단해 해제 생략 - 사용자: {user_id}, 현재 만료: {current}, 알림 만료: {stale_before}"
                )
                return None
            entitlement.is_premium = False
            entitlement.premium_tier = None
            if clear_grace_period:
                entitlement.in_grace_period = False
            if clear_expiry:
                entitlement.subscription_expiry_date = None
            saved = await self.entitlement_store.save_entitlement(entitlement)

        self.logger.info(f"프리미엄 해제 - 사용자: {user_id}, 사유: {reason}")
        return saved

    async def set_auto_renew(self, user_id: str, enabled: bool) -> UserEntitlement:
        async with self.locks.hold(user_id):
            entitlement = await self.entitlement_store.get_entitlement(user_id)
            entitlement.auto_renew_enabled = enabled
            return await self.entitlement_store.save_entitlement(entitlement)

    async def suspend(self, user_id: str, reason: str) -> UserEntitlement:
        """계정 정지. 이미 정지된 경우 최초 사유와 시각을 유지한다."""
        async with self.locks.hold(user_id):
            entitlement = await self.entitlement_store.get_entitlement(user_id)
            if entitlement.suspended:
                return entitlement
            entitlement.suspended = True
            entitlement.suspension_reason = reason
            entitlement.suspended_at = utcnow()
            saved = await self.entitlement_store.save_entitlement(entitlement)

        self.logger.warning(f"계정 정지 - 사용자: {user_id}, 사유: {reason}")
        await self.log_user_action(user_id, "suspended", {"reason": reason})
        return saved
