"""
서비스 및 저장소 인터페이스 정의
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from iap_guard.core.models import (
    AdminAlert,
    FlaggedTransaction,
    FraudLogEntry,
    PurchaseRecord,
    RefundHistoryEntry,
    UserEntitlement,
    UserNotice,
)


class IAuthService(ABC):
    """인증 서비스 인터페이스"""

    @abstractmethod
    async def verify_auth(self, credentials) -> Any:
        """토큰 검증"""
        pass

    @abstractmethod
    def is_admin(self, user: Any) -> bool:
        """관리자 권한 여부"""
        pass


class IPurchaseLedger(ABC):
    """구매 원장 인터페이스 - transaction_id 기준 유일"""

    @abstractmethod
    async def create_purchase_if_absent(self, record: PurchaseRecord) -> bool:
        """원장에 없을 때만 기록. 새로 기록했으면 True"""
        pass

    @abstractmethod
    async def get_purchase(self, transaction_id: str) -> Optional[PurchaseRecord]:
        pass

    @abstractmethod
    async def get_purchase_by_original_transaction_id(self, original_transaction_id: str) -> Optional[PurchaseRecord]:
        pass

    @abstractmethod
    async def mark_refunded(self, transaction_id: str, refund_type: str, refund_date: datetime) -> bool:
        """환불되지 않은 레코드만 환불 처리. 상태가 바뀌었으면 True"""
        pass

    @abstractmethod
    async def update_auto_renew_status(self, transaction_id: str, enabled: bool) -> bool:
        pass

    @abstractmethod
    async def count_refunded_purchases(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def count_purchases_since(self, user_id: str, since: datetime) -> int:
        pass

    @abstractmethod
    async def count_trial_accounts_for_device(self, device_id: str, exclude_user_id: str) -> int:
        """같은 기기에서 체험/프로모션을 시작한 다른 계정 수"""
        pass

    @abstractmethod
    async def list_purchases_since(self, since: datetime) -> List[PurchaseRecord]:
        pass

    @abstractmethod
    async def list_refunded_purchases(self, since: datetime, limit: int = 50) -> List[PurchaseRecord]:
        pass


class IEntitlementStore(ABC):
    """사용자 권한 저장소 인터페이스"""

    @abstractmethod
    async def get_entitlement(self, user_id: str) -> UserEntitlement:
        pass

    @abstractmethod
    async def save_entitlement(self, entitlement: UserEntitlement) -> UserEntitlement:
        pass

    @abstractmethod
    async def has_grant(self, user_id: str, transaction_id: str) -> bool:
        pass

    @abstractmethod
    async def record_grant_if_absent(self, user_id: str, transaction_id: str) -> bool:
        """거래별 권한 부여 기록. 새로 기록했으면 True"""
        pass


class IAuditLog(ABC):
    """사기 로그, 환불 이력, 경보, 검토 대상 거래 저장소 인터페이스"""

    @abstractmethod
    async def log_fraud_event(self, entry: FraudLogEntry) -> bool:
        pass

    @abstractmethod
    async def count_fraud_events(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def list_fraud_logs(self, since: datetime, limit: int = 100) -> List[FraudLogEntry]:
        pass

    @abstractmethod
    async def append_refund_history(self, entry: RefundHistoryEntry) -> bool:
        pass

    @abstractmethod
    async def list_refund_history(self, since: datetime, limit: int = 500) -> List[RefundHistoryEntry]:
        pass

    @abstractmethod
    async def create_admin_alert(self, alert: AdminAlert) -> bool:
        pass

    @abstractmethod
    async def list_admin_alerts(self, acknowledged: bool = False, limit: int = 20) -> List[AdminAlert]:
        pass

    @abstractmethod
    async def create_flagged_transaction_if_absent(self, flagged: FlaggedTransaction) -> bool:
        pass

    @abstractmethod
    async def get_flagged_transaction(self, transaction_id: str) -> Optional[FlaggedTransaction]:
        pass

    @abstractmethod
    async def update_flagged_transaction(self, flagged: FlaggedTransaction) -> bool:
        """미검토 상태인 거래에만 검토 결과를 기록한다. 기록했으면 True"""
        pass

    @abstractmethod
    async def list_pending_flagged_transactions(self, limit: int = 50) -> List[FlaggedTransaction]:
        pass

    @abstractmethod
    async def has_processed_notification(self, notification_uuid: str) -> bool:
        pass

    @abstractmethod
    async def record_notification(self, notification_uuid: str, status: str, payload: Dict[str, Any] = None) -> bool:
        pass

    @abstractmethod
    async def log_system_event(self, user_id: str = None, event_type: str = 'info', event_data: Dict = None) -> bool:
        """시스템 이벤트 로깅"""
        pass

    @abstractmethod
    async def log_admin_action(
        self,
        actor_id: Optional[str],
        action: str,
        target_user: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        pass


class INoticeSender(ABC):
    """사용자 알림 발송 인터페이스"""

    @abstractmethod
    async def send_notice(self, notice: UserNotice) -> bool:
        pass
