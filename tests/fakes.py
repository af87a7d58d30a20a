"""테스트용 인메모리 저장소"""
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from iap_guard.core.interfaces import IAuditLog, IEntitlementStore, INoticeSender, IPurchaseLedger
from iap_guard.core.models import (
    AdminAlert,
    FlaggedTransaction,
    FraudLogEntry,
    PurchaseRecord,
    RefundHistoryEntry,
    UserEntitlement,
    UserNotice,
)


class InMemoryStore(IPurchaseLedger, IEntitlementStore, IAuditLog, INoticeSender):
    """DatabaseHelper 와 같은 계약을 따르는 인메모리 더블"""

    def __init__(self):
        self.purchases: Dict[str, PurchaseRecord] = {}
        self.entitlements: Dict[str, UserEntitlement] = {}
        self.grants: set = set()
        self.fraud_logs: List[FraudLogEntry] = []
        self.refund_history: List[RefundHistoryEntry] = []
        self.admin_alerts: List[AdminAlert] = []
        self.flagged: Dict[str, FlaggedTransaction] = {}
        self.notifications: Dict[str, Tuple[str, Dict[str, Any]]] = {}
        self.system_events: List[Dict[str, Any]] = []
        self.admin_actions: List[Dict[str, Any]] = []
        self.notices: List[UserNotice] = []

    # 구매 원장
    async def create_purchase_if_absent(self, record: PurchaseRecord) -> bool:
        if record.transaction_id in self.purchases:
            return False
        self.purchases[record.transaction_id] = replace(record)
        return True

    async def get_purchase(self, transaction_id: str) -> Optional[PurchaseRecord]:
        return self.purchases.get(transaction_id)

    async def get_purchase_by_original_transaction_id(self, original_transaction_id: str) -> Optional[PurchaseRecord]:
        matches = [p for p in self.purchases.values() if p.original_transaction_id == original_transaction_id]
        if not matches:
            return None
        return max(matches, key=lambda p: p.purchase_date)

    async def mark_refunded(self, transaction_id: str, refund_type: str, refund_date: datetime) -> bool:
        record = self.purchases.get(transaction_id)
        if record is None or record.refunded:
            return False
        record.refunded = True
        record.refund_type = refund_type
        record.refund_date = refund_date
        return True

    async def update_auto_renew_status(self, transaction_id: str, enabled: bool) -> bool:
        record = self.purchases.get(transaction_id)
        if record is None:
            return False
        record.auto_renew_status = enabled
        return True

    async def count_refunded_purchases(self, user_id: str) -> int:
        return len([p for p in self.purchases.values() if p.user_id == user_id and p.refunded])

    async def count_purchases_since(self, user_id: str, since: datetime) -> int:
        return len([p for p in self.purchases.values() if p.user_id == user_id and p.created_at >= since])

    async def count_trial_accounts_for_device(self, device_id: str, exclude_user_id: str) -> int:
        return len({
            p.user_id for p in self.purchases.values()
            if p.device_id == device_id
            and p.user_id != exclude_user_id
            and (p.is_trial_period or p.is_promotional)
        })

    async def list_purchases_since(self, since: datetime) -> List[PurchaseRecord]:
        return [p for p in self.purchases.values() if p.purchase_date > since]

    async def list_refunded_purchases(self, since: datetime, limit: int = 50) -> List[PurchaseRecord]:
        refunded = [p for p in self.purchases.values() if p.refunded and p.refund_date and p.refund_date > since]
        refunded.sort(key=lambda p: p.refund_date, reverse=True)
        return refunded[:limit]

    # 사용자 권한
    async def get_entitlement(self, user_id: str) -> UserEntitlement:
        stored = self.entitlements.get(user_id)
        if stored is None:
            return UserEntitlement(user_id=user_id)
        return replace(stored, consumables=dict(stored.consumables))

    async def save_entitlement(self, entitlement: UserEntitlement) -> UserEntitlement:
        self.entitlements[entitlement.user_id] = replace(entitlement, consumables=dict(entitlement.consumables))
        return entitlement

    async def has_grant(self, user_id: str, transaction_id: str) -> bool:
        return (user_id, transaction_id) in self.grants

    async def record_grant_if_absent(self, user_id: str, transaction_id: str) -> bool:
        key = (user_id, transaction_id)
        if key in self.grants:
            return False
        self.grants.add(key)
        return True

    # 감사 로그
    async def log_fraud_event(self, entry: FraudLogEntry) -> bool:
        self.fraud_logs.append(entry)
        return True

    async def count_fraud_events(self, user_id: str) -> int:
        return len([e for e in self.fraud_logs if e.user_id == user_id])

    async def list_fraud_logs(self, since: datetime, limit: int = 100) -> List[FraudLogEntry]:
        logs = sorted((e for e in self.fraud_logs if e.timestamp > since), key=lambda e: e.timestamp, reverse=True)
        return logs[:limit]

    async def append_refund_history(self, entry: RefundHistoryEntry) -> bool:
        self.refund_history.append(entry)
        return True

    async def list_refund_history(self, since: datetime, limit: int = 500) -> List[RefundHistoryEntry]:
        return [e for e in self.refund_history if e.timestamp > since][:limit]

    async def create_admin_alert(self, alert: AdminAlert) -> bool:
        self.admin_alerts.append(alert)
        return True

    async def list_admin_alerts(self, acknowledged: bool = False, limit: int = 20) -> List[AdminAlert]:
        return [a for a in self.admin_alerts if a.acknowledged == acknowledged][:limit]

    async def create_flagged_transaction_if_absent(self, flagged: FlaggedTransaction) -> bool:
        if flagged.transaction_id in self.flagged:
            return False
        self.flagged[flagged.transaction_id] = replace(flagged)
        return True

    async def get_flagged_transaction(self, transaction_id: str) -> Optional[FlaggedTransaction]:
        stored = self.flagged.get(transaction_id)
        return replace(stored) if stored else None

    async def update_flagged_transaction(self, flagged: FlaggedTransaction) -> bool:
        stored = self.flagged.get(flagged.transaction_id)
        if stored is None or stored.reviewed:
            return False
        self.flagged[flagged.transaction_id] = replace(flagged)
        return True

    async def list_pending_flagged_transactions(self, limit: int = 50) -> List[FlaggedTransaction]:
        pending = [replace(f) for f in self.flagged.values() if not f.reviewed]
        pending.sort(key=lambda f: f.fraud_score, reverse=True)
        return pending[:limit]

    async def has_processed_notification(self, notification_uuid: str) -> bool:
        return notification_uuid in self.notifications

    async def record_notification(self, notification_uuid: str, status: str, payload: Dict[str, Any] = None) -> bool:
        self.notifications[notification_uuid] = (status, payload or {})
        return True

    async def log_system_event(self, user_id: str = None, event_type: str = 'info', event_data: Dict = None) -> bool:
        self.system_events.append({"user_id": user_id, "event_type": event_type, "event_data": event_data or {}})
        return True

    async def log_admin_action(
        self,
        actor_id: Optional[str],
        action: str,
        target_user: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        self.admin_actions.append(
            {"actor_id": actor_id, "action": action, "target_user": target_user, "metadata": metadata or {}}
        )
        return True

    # 사용자 알림
    async def send_notice(self, notice: UserNotice) -> bool:
        self.notices.append(notice)
        return True

    # 테스트 편의
    def events_of(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.system_events if e["event_type"] == event_type]
