"""
Supabase(PostgREST) 기반 저장소 헬퍼

구매 원장, 사용자 권한, 감사 로그, 사용자 알림 테이블에 대한 CRUD 를 제공한다.
원장/권한 쓰기 실패는 호출자에게 전파하고, 시스템 로그 기록 실패는 경고로만 남긴다.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum
import logging

from postgrest.exceptions import APIError
from supabase import Client

from iap_guard.core.interfaces import IAuditLog, IEntitlementStore, INoticeSender, IPurchaseLedger
from iap_guard.core.models import (
    AdminAlert,
    FlaggedTransaction,
    FraudLogEntry,
    PurchaseRecord,
    RefundHistoryEntry,
    ReviewDecision,
    Severity,
    UserEntitlement,
    UserNotice,
    utcnow,
)
from iap_guard.core.responses import ExternalServiceException

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
APPLE_WEBHOOK_EVENT = "apple_webhook"

_PURCHASE_DATETIME_FIELDS = ("purchase_date", "expiry_date", "refund_date", "created_at")
_CONSUMABLE_FIELDS = ("super_likes_remaining", "boosts_remaining", "rewinds_remaining")


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


class DatabaseHelper(IPurchaseLedger, IEntitlementStore, IAuditLog, INoticeSender):
    def __init__(self, supabase_client: Client, admin_client: Client = None):
        self.supabase = supabase_client
        self.admin_client = admin_client or supabase_client

    def _get_client(self, use_admin: bool = False):
        """적절한 클라이언트 반환 - 일반적으로 admin client 사용"""
        return self.admin_client if use_admin or self.admin_client else self.supabase

    @staticmethod
    def _parse_iso_datetime(value: Any) -> Optional[datetime]:
        """ISO 포맷 문자열을 datetime 객체로 변환 (Z 접두 처리 포함)"""
        if not value:
            return None
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                normalized = value.replace('Z', '+00:00')
                return datetime.fromisoformat(normalized)
            except ValueError:
                return None
        return None

    @staticmethod
    def _raise_store_error(operation: str, error: Exception):
        logger.error(f"[DB] {operation} 실패: {error}")
        raise ExternalServiceException("Supabase", f"저장소 작업 실패: {operation}") from error

    async def _insert_if_absent(self, table: str, row: Dict[str, Any], operation: str) -> bool:
        """유니크 제약 기반 create-if-absent. 중복 키는 False"""
        try:
            result = self._get_client(use_admin=True).table(table).insert(_serialize(row)).execute()
            return bool(result.data)
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                return False
            self._raise_store_error(operation, e)
        except Exception as e:
            self._raise_store_error(operation, e)

    # ------------------------------------------------------------------
    # 구매 원장
    # ------------------------------------------------------------------

    def _row_to_purchase(self, row: Dict[str, Any]) -> PurchaseRecord:
        data = {field: row.get(field) for field in PurchaseRecord.__dataclass_fields__ if field in row}
        for field in _PURCHASE_DATETIME_FIELDS:
            if field in data:
                data[field] = self._parse_iso_datetime(data[field])
        if data.get("purchase_date") is None:
            data["purchase_date"] = utcnow()
        if data.get("created_at") is None:
            data.pop("created_at", None)
        if data.get("purchase_id") is None:
            data.pop("purchase_id", None)
        return PurchaseRecord(**data)

    async def create_purchase_if_absent(self, record: PurchaseRecord) -> bool:
        return await self._insert_if_absent('purchases', record.to_dict(), "구매 기록 생성")

    async def get_purchase(self, transaction_id: str) -> Optional[PurchaseRecord]:
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .select('*').eq('transaction_id', transaction_id).limit(1).execute()
            )
        except Exception as e:
            self._raise_store_error("구매 조회", e)
        return self._row_to_purchase(result.data[0]) if result.data else None

    async def get_purchase_by_original_transaction_id(self, original_transaction_id: str) -> Optional[PurchaseRecord]:
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .select('*').eq('original_transaction_id', original_transaction_id)
                .order('purchase_date', desc=True).limit(1).execute()
            )
        except Exception as e:
            self._raise_store_error("원거래 기준 구매 조회", e)
        return self._row_to_purchase(result.data[0]) if result.data else None

    async def mark_refunded(self, transaction_id: str, refund_type: str, refund_date: datetime) -> bool:
        """refunded = false 조건부 업데이트"""
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .update({
                    'refunded': True,
                    'refund_type': refund_type,
                    'refund_date': refund_date.isoformat(),
                })
                .eq('transaction_id', transaction_id)
                .eq('refunded', False)
                .execute()
            )
        except Exception as e:
            self._raise_store_error("환불 표시", e)
        return bool(result.data)

    async def update_auto_renew_status(self, transaction_id: str, enabled: bool) -> bool:
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .update({'auto_renew_status': enabled})
                .eq('transaction_id', transaction_id)
                .execute()
            )
        except Exception as e:
            self._raise_store_error("자동 갱신 상태 변경", e)
        return bool(result.data)

    async def count_refunded_purchases(self, user_id: str) -> int:
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .select('transaction_id', count='exact')
                .eq('user_id', user_id).eq('refunded', True).execute()
            )
        except Exception as e:
            self._raise_store_error("환불 건수 조회", e)
        return result.count or 0

    async def count_purchases_since(self, user_id: str, since: datetime) -> int:
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .select('transaction_id', count='exact')
                .eq('user_id', user_id).gte('created_at', since.isoformat()).execute()
            )
        except Exception as e:
            self._raise_store_error("최근 구매 건수 조회", e)
        return result.count or 0

    async def count_trial_accounts_for_device(self, device_id: str, exclude_user_id: str) -> int:
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .select('user_id')
                .eq('device_id', device_id)
                .neq('user_id', exclude_user_id)
                .or_('is_trial_period.eq.true,is_promotional.eq.true')
                .execute()
            )
        except Exception as e:
            self._raise_store_error("기기별 체험 계정 조회", e)
        return len({row.get('user_id') for row in result.data or []})

    async def list_purchases_since(self, since: datetime) -> List[PurchaseRecord]:
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .select('*').gt('purchase_date', since.isoformat()).execute()
            )
        except Exception as e:
            self._raise_store_error("기간 구매 조회", e)
        return [self._row_to_purchase(row) for row in result.data or []]

    async def list_refunded_purchases(self, since: datetime, limit: int = 50) -> List[PurchaseRecord]:
        try:
            result = (
                self._get_client(use_admin=True).table('purchases')
                .select('*').eq('refunded', True).gt('refund_date', since.isoformat())
                .order('refund_date', desc=True).limit(limit).execute()
            )
        except Exception as e:
            self._raise_store_error("환불 구매 조회", e)
        return [self._row_to_purchase(row) for row in result.data or []]

    # ------------------------------------------------------------------
    # 사용자 권한
    # ------------------------------------------------------------------

    async def get_entitlement(self, user_id: str) -> UserEntitlement:
        try:
            result = (
                self._get_client(use_admin=True).table('users')
                .select('*').eq('id', user_id).limit(1).execute()
            )
        except Exception as e:
            self._raise_store_error("사용자 권한 조회", e)

        if not result.data:
            return UserEntitlement(user_id=user_id)

        row = result.data[0]
        return UserEntitlement(
            user_id=user_id,
            is_premium=bool(row.get('is_premium')),
            premium_tier=row.get('premium_tier'),
            subscription_expiry_date=self._parse_iso_datetime(row.get('subscription_expiry_date')),
            auto_renew_enabled=bool(row.get('auto_renew_enabled')),
            in_grace_period=bool(row.get('in_grace_period')),
            suspended=bool(row.get('suspended')),
            suspension_reason=row.get('suspension_reason'),
            suspended_at=self._parse_iso_datetime(row.get('suspended_at')),
            consumables={field: row[field] for field in _CONSUMABLE_FIELDS if row.get(field) is not None},
        )

    async def save_entitlement(self, entitlement: UserEntitlement) -> UserEntitlement:
        row = {
            'id': entitlement.user_id,
            'is_premium': entitlement.is_premium,
            'premium_tier': entitlement.premium_tier,
            'subscription_expiry_date': entitlement.subscription_expiry_date,
            'auto_renew_enabled': entitlement.auto_renew_enabled,
            'in_grace_period': entitlement.in_grace_period,
            'suspended': entitlement.suspended,
            'suspension_reason': entitlement.suspension_reason,
            'suspended_at': entitlement.suspended_at,
            'updated_at': utcnow(),
            **entitlement.consumables,
        }
        try:
            self._get_client(use_admin=True).table('users').upsert(_serialize(row), on_conflict='id').execute()
        except Exception as e:
            self._raise_store_error("사용자 권한 저장", e)
        return entitlement

    async def has_grant(self, user_id: str, transaction_id: str) -> bool:
        try:
            result = (
                self._get_client(use_admin=True).table('entitlement_grants')
                .select('transaction_id').eq('user_id', user_id).eq('transaction_id', transaction_id)
                .limit(1).execute()
            )
        except Exception as e:
            self._raise_store_error("권한 부여 기록 조회", e)
        return bool(result.data)

    async def record_grant_if_absent(self, user_id: str, transaction_id: str) -> bool:
        return await self._insert_if_absent(
            'entitlement_grants',
            {'user_id': user_id, 'transaction_id': transaction_id, 'granted_at': utcnow()},
            "권한 부여 기록",
        )

    # ------------------------------------------------------------------
    # 사기 로그 / 환불 이력 / 경보 / 검토 대상
    # ------------------------------------------------------------------

    async def log_fraud_event(self, entry: FraudLogEntry) -> bool:
        try:
            result = self._get_client(use_admin=True).table('fraud_logs').insert(_serialize({
                'user_id': entry.user_id,
                'event_type': entry.event_type,
                'details': entry.details,
                'severity': entry.severity,
                'timestamp': entry.timestamp,
            })).execute()
            return bool(result.data)
        except Exception as e:
            self._raise_store_error("사기 로그 기록", e)

    async def count_fraud_events(self, user_id: str) -> int:
        try:
            result = (
                self._get_client(use_admin=True).table('fraud_logs')
                .select('id', count='exact').eq('user_id', user_id).execute()
            )
        except Exception as e:
            self._raise_store_error("사기 로그 건수 조회", e)
        return result.count or 0

    async def list_fraud_logs(self, since: datetime, limit: int = 100) -> List[FraudLogEntry]:
        try:
            result = (
                self._get_client(use_admin=True).table('fraud_logs')
                .select('*').gt('timestamp', since.isoformat())
                .order('timestamp', desc=True).limit(limit).execute()
            )
        except Exception as e:
            self._raise_store_error("사기 로그 조회", e)
        return [
            FraudLogEntry(
                user_id=row.get('user_id'),
                event_type=row.get('event_type') or 'unknown',
                details=row.get('details') or {},
                severity=Severity(row.get('severity') or Severity.INFO.value),
                timestamp=self._parse_iso_datetime(row.get('timestamp')) or utcnow(),
            )
            for row in result.data or []
        ]

    async def append_refund_history(self, entry: RefundHistoryEntry) -> bool:
        try:
            result = self._get_client(use_admin=True).table('refund_history').insert(_serialize({
                'user_id': entry.user_id,
                'transaction_id': entry.transaction_id,
                'product_id': entry.product_id,
                'timestamp': entry.timestamp,
            })).execute()
            return bool(result.data)
        except Exception as e:
            self._raise_store_error("환불 이력 기록", e)

    async def list_refund_history(self, since: datetime, limit: int = 500) -> List[RefundHistoryEntry]:
        try:
            result = (
                self._get_client(use_admin=True).table('refund_history')
                .select('*').gt('timestamp', since.isoformat())
                .order('timestamp', desc=True).limit(limit).execute()
            )
        except Exception as e:
            self._raise_store_error("환불 이력 조회", e)
        return [
            RefundHistoryEntry(
                user_id=row.get('user_id'),
                transaction_id=row.get('transaction_id'),
                product_id=row.get('product_id'),
                timestamp=self._parse_iso_datetime(row.get('timestamp')) or utcnow(),
            )
            for row in result.data or []
        ]

    async def create_admin_alert(self, alert: AdminAlert) -> bool:
        try:
            result = self._get_client(use_admin=True).table('admin_alerts').insert(_serialize({
                'alert_type': alert.alert_type,
                'details': alert.details,
                'priority': alert.priority,
                'acknowledged': alert.acknowledged,
                'timestamp': alert.timestamp,
            })).execute()
            return bool(result.data)
        except Exception as e:
            self._raise_store_error("관리자 경보 생성", e)

    async def list_admin_alerts(self, acknowledged: bool = False, limit: int = 20) -> List[AdminAlert]:
        try:
            result = (
                self._get_client(use_admin=True).table('admin_alerts')
                .select('*').eq('acknowledged', acknowledged)
                .order('timestamp', desc=True).limit(limit).execute()
            )
        except Exception as e:
            self._raise_store_error("관리자 경보 조회", e)
        return [
            AdminAlert(
                alert_type=row.get('alert_type'),
                details=row.get('details') or {},
                priority=Severity(row.get('priority') or Severity.INFO.value),
                acknowledged=bool(row.get('acknowledged')),
                timestamp=self._parse_iso_datetime(row.get('timestamp')) or utcnow(),
            )
            for row in result.data or []
        ]

    def _row_to_flagged(self, row: Dict[str, Any]) -> FlaggedTransaction:
        decision = row.get('decision')
        return FlaggedTransaction(
            transaction_id=row.get('transaction_id'),
            user_id=row.get('user_id'),
            fraud_score=int(row.get('fraud_score') or 0),
            reviewed=bool(row.get('reviewed')),
            decision=ReviewDecision(decision) if decision else None,
            admin_note=row.get('admin_note'),
            reviewed_at=self._parse_iso_datetime(row.get('reviewed_at')),
            reviewed_by=row.get('reviewed_by'),
            timestamp=self._parse_iso_datetime(row.get('timestamp')) or utcnow(),
        )

    async def create_flagged_transaction_if_absent(self, flagged: FlaggedTransaction) -> bool:
        return await self._insert_if_absent(
            'flagged_transactions',
            {
                'transaction_id': flagged.transaction_id,
                'user_id': flagged.user_id,
                'fraud_score': flagged.fraud_score,
                'reviewed': flagged.reviewed,
                'timestamp': flagged.timestamp,
            },
            "검토 대상 거래 생성",
        )

    async def get_flagged_transaction(self, transaction_id: str) -> Optional[FlaggedTransaction]:
        try:
            result = (
                self._get_client(use_admin=True).table('flagged_transactions')
                .select('*').eq('transaction_id', transaction_id).limit(1).execute()
            )
        except Exception as e:
            self._raise_store_error("검토 대상 거래 조회", e)
        return self._row_to_flagged(result.data[0]) if result.data else None

    async def update_flagged_transaction(self, flagged: FlaggedTransaction) -> bool:
        try:
            result = (
                self._get_client(use_admin=True).table('flagged_transactions')
                .update(_serialize({
                    'reviewed': flagged.reviewed,
                    'decision': flagged.decision,
                    'admin_note': flagged.admin_note,
                    'reviewed_at': flagged.reviewed_at,
                    'reviewed_by': flagged.reviewed_by,
                }))
                .eq('transaction_id', flagged.transaction_id)
                .eq('reviewed', False)
                .execute()
            )
        except Exception as e:
            self._raise_store_error("검토 결과 저장", e)
        return bool(result.data)

    async def list_pending_flagged_transactions(self, limit: int = 50) -> List[FlaggedTransaction]:
        try:
            result = (
                self._get_client(use_admin=True).table('flagged_transactions')
                .select('*').eq('reviewed', False)
                .order('fraud_score', desc=True).limit(limit).execute()
            )
        except Exception as e:
            self._raise_store_error("미검토 거래 조회", e)
        return [self._row_to_flagged(row) for row in result.data or []]

    # ------------------------------------------------------------------
    # 웹훅 처리 기록 / 시스템 로그
    # ------------------------------------------------------------------

    async def has_processed_notification(self, notification_uuid: str) -> bool:
        """App Store 알림 UUID 가 이미 처리되었는지 확인"""
        if not notification_uuid:
            return False
        try:
            result = (
                self._get_client(use_admin=True).table('system_logs')
                .select('id')
                .eq('event_type', APPLE_WEBHOOK_EVENT)
                .contains('event_data', {'event_id': notification_uuid})
                .limit(1)
                .execute()
            )
            return bool(result.data)
        except Exception as e:
            logger.error(f"웹훅 이벤트 중복 확인 실패: {e}")
            return False

    async def record_notification(self, notification_uuid: str, status: str, payload: Dict[str, Any] = None) -> bool:
        """App Store 알림 처리 기록"""
        if not notification_uuid:
            return False

        event_payload: Dict[str, Any] = {
            'event_id': notification_uuid,
            'status': status,
        }
        if payload:
            event_payload['payload'] = payload
        return await self.log_system_event(event_type=APPLE_WEBHOOK_EVENT, event_data=event_payload)

    async def log_system_event(self, user_id: str = None, event_type: str = 'info',
                               event_data: Dict = None) -> bool:
        """시스템 이벤트 로그 기록"""
        try:
            log_data = {
                'user_id': user_id,
                'event_type': event_type,
                'event_data': _serialize(event_data or {}),
            }

            result = self.admin_client.table('system_logs').insert(log_data).execute()
            return len(result.data) > 0
        except Exception as e:
            logger.error(f"시스템 로그 기록 실패: {e}")
            return False

    async def log_admin_action(
        self,
        actor_id: Optional[str],
        action: str,
        target_user: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """관리자 작업 감사 로그 기록"""
        event_payload: Dict[str, Any] = {
            'actor_id': actor_id,
            'action': action,
        }
        if metadata:
            event_payload['metadata'] = metadata

        return await self.log_system_event(
            user_id=target_user,
            event_type='admin_action',
            event_data=event_payload,
        )

    # ------------------------------------------------------------------
    # 사용자 알림
    # ------------------------------------------------------------------

    async def send_notice(self, notice: UserNotice) -> bool:
        try:
            result = self._get_client(use_admin=True).table('notifications').insert(_serialize({
                'user_id': notice.user_id,
                'type': notice.notice_type,
                'title': notice.title,
                'message': notice.message,
                'data': notice.data,
                'read': False,
                'timestamp': notice.timestamp,
            })).execute()
            return bool(result.data)
        except Exception as e:
            self._raise_store_error("사용자 알림 생성", e)
