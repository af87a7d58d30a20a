"""
관리자 검토 서비스

검토 대상 거래 조회/결정, 환불 추적, 미확인 경보, 사기 대시보드, 구독 분석을 제공한다.
호출자는 라우터에서 관리자 권한 확인을 마친 상태여야 한다.
"""
from collections import Counter
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from iap_guard.core.base_service import BaseService
from iap_guard.core.interfaces import IAuditLog, IEntitlementStore, IPurchaseLedger
from iap_guard.core.models import FlaggedTransaction, FraudLogEntry, ReviewDecision, Severity, utcnow
from iap_guard.core.responses import BusinessException, ErrorKind, NotFoundException
from iap_guard.services.entitlement_service import EntitlementService
from iap_guard.services.fraud_scorer import FraudScorer


DASHBOARD_PERIOD_DAYS = 30
DASHBOARD_FRAUD_LOG_LIMIT = 100
DASHBOARD_RECENT_LOGS = 20
DASHBOARD_REFUND_ABUSE_MIN = 2


class ReviewService(BaseService):
    """관리자 검토 및 조회"""

    def __init__(
        self,
        ledger: IPurchaseLedger,
        entitlement_store: IEntitlementStore,
        entitlements: EntitlementService,
        audit_log: IAuditLog,
        scorer: FraudScorer,
    ):
        super().__init__(audit_log)
        self.ledger = ledger
        self.entitlement_store = entitlement_store
        self.entitlements = entitlements
        self.scorer = scorer

    async def list_pending(self, limit: int = 50) -> List[Dict[str, Any]]:
        """미검토 거래를 사기 점수 내림차순으로 반환"""
        pending = await self.audit_log.list_pending_flagged_transactions(limit)
        pending = sorted(pending, key=lambda item: item.fraud_score, reverse=True)
        return [asdict(item) for item in pending[:limit]]

    async def review(
        self,
        transaction_id: str,
        decision: ReviewDecision,
        admin_note: str = "",
        admin_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        flagged = await self.audit_log.get_flagged_transaction(transaction_id)
        if flagged is None:
            raise NotFoundException("검토 대상 거래를 찾을 수 없습니다")
        if flagged.reviewed:
            raise BusinessException("이미 검토가 완료된 거래입니다", ErrorKind.ALREADY_EXISTS, 409)

        # 거절 처리(권한 해제, 정지)가 끝난 뒤에만 검토 완료로 기록한다
        if decision is ReviewDecision.REJECT:
            await self._revoke_and_suspend(flagged, admin_note)

        flagged.reviewed = True
        flagged.decision = decision
        flagged.admin_note = admin_note
        flagged.reviewed_at = utcnow()
        flagged.reviewed_by = admin_id
        if not await self.audit_log.update_flagged_transaction(flagged):
            self.logger.warning(f"동시 검토 충돌 - 거래: {transaction_id}, 관리자: {admin_id}")
            raise BusinessException("이미 검토가 완료된 거래입니다", ErrorKind.ALREADY_EXISTS, 409)

        if decision is ReviewDecision.REJECT:
            await self.audit_log.log_fraud_event(
                FraudLogEntry(
                    user_id=flagged.user_id,
                    event_type="fraud_confirmed_by_admin",
                    details={"transaction_id": transaction_id, "fraud_score": flagged.fraud_score},
                    severity=Severity.HIGH,
                )
            )

        await self.audit_log.log_admin_action(
            admin_id,
            f"review_{decision.value}",
            flagged.user_id,
            {"transaction_id": transaction_id, "fraud_score": flagged.fraud_score, "admin_note": admin_note},
        )
        self.logger.info(
            f"검토 완료 - 거래: {transaction_id}, 사용자: {flagged.user_id}, 결정: {decision.value}, 관리자: {admin_id}"
        )
        return asdict(flagged)

    async def _revoke_and_suspend(self, flagged: FlaggedTransaction, admin_note: str) -> None:
        user_id = flagged.user_id
        async with self.entitlements.locks.hold(user_id):
            await self.entitlements.clear_premium(user_id, f"admin rejected {flagged.transaction_id}")
            reason = f"fraudulent transaction: {admin_note}" if admin_note else "fraudulent transaction"
            await self.entitlements.suspend(user_id, reason)
        self.logger.warning(f"사기 거래 확정, 사용자 정지 - 거래: {flagged.transaction_id}, 사용자: {user_id}")

    async def refund_tracking(self, limit: int = 50, period_days: int = 30) -> Dict[str, Any]:
        """기간 내 환불 거래와 사용자별 누적 환불 수"""
        since = utcnow() - timedelta(days=period_days)
        refunded = await self.ledger.list_refunded_purchases(since, limit)
        history = await self.audit_log.list_refund_history(since)

        user_totals: Dict[str, Dict[str, Any]] = {}
        for purchase in refunded:
            if purchase.user_id in user_totals:
                continue
            entitlement = await self.entitlement_store.get_entitlement(purchase.user_id)
            user_totals[purchase.user_id] = {
                "total_refunds": await self.ledger.count_refunded_purchases(purchase.user_id),
                "suspended": entitlement.suspended,
            }

        refunds = []
        for purchase in refunded:
            item = purchase.to_dict()
            item["user"] = {"id": purchase.user_id, **user_totals[purchase.user_id]}
            refunds.append(item)

        period_counts = Counter(entry.user_id for entry in history)
        return {
            "period_days": period_days,
            "refunds": refunds,
            "user_refund_counts": [
                {"user_id": user_id, "refund_count": count}
                for user_id, count in period_counts.most_common()
            ],
        }

    async def list_unacknowledged_alerts(self, limit: int = 20) -> List[Dict[str, Any]]:
        alerts = await self.audit_log.list_admin_alerts(acknowledged=False, limit=limit)
        return [asdict(alert) for alert in alerts]

    async def fraud_dashboard(self) -> Dict[str, Any]:
        since = utcnow() - timedelta(days=DASHBOARD_PERIOD_DAYS)
        fraud_logs = await self.audit_log.list_fraud_logs(since, DASHBOARD_FRAUD_LOG_LIMIT)
        flagged = await self.list_pending(50)
        history = await self.audit_log.list_refund_history(since)
        alerts = await self.list_unacknowledged_alerts(20)

        refund_counts = Counter(entry.user_id for entry in history)
        refund_abusers = [
            {"user_id": user_id, "refund_count": count}
            for user_id, count in refund_counts.most_common()
            if count > DASHBOARD_REFUND_ABUSE_MIN
        ]
        by_type = Counter(log.event_type for log in fraud_logs)

        return {
            "fraud_logs": [asdict(log) for log in fraud_logs[:DASHBOARD_RECENT_LOGS]],
            "flagged_transactions": flagged,
            "refund_abusers": refund_abusers,
            "admin_alerts": alerts,
            "statistics": {
                "total_fraud_events": len(fraud_logs),
                "total_flagged_transactions": len(flagged),
                "total_refund_abusers": len(refund_abusers),
                "pending_alerts": len(alerts),
                "fraud_events_by_type": dict(by_type),
            },
            "generated_at": utcnow(),
        }

    async def subscription_analytics(self, period_days: int = 30) -> Dict[str, Any]:
        since = utcnow() - timedelta(days=period_days)
        purchases = await self.ledger.list_purchases_since(since)
        total = len(purchases)

        subscriptions = [p for p in purchases if p.is_subscription]
        refunded = [p for p in purchases if p.refunded]
        high_risk = [p for p in purchases if p.fraud_score >= self.scorer.review_threshold]
        rejected_level = [p for p in purchases if p.fraud_score >= self.scorer.reject_threshold]

        def rate(count: int) -> float:
            return round(count / total * 100, 2) if total else 0.0

        return {
            "period_days": period_days,
            "total_purchases": total,
            "subscriptions": {
                "total": len(subscriptions),
                "new": len([p for p in subscriptions if not p.is_promotional]),
                "promotional": len([p for p in subscriptions if p.is_promotional]),
                "trial": len([p for p in subscriptions if p.is_trial_period]),
                "refunded": len([p for p in subscriptions if p.refunded]),
            },
            "metrics": {
                "refund_rate": rate(len(refunded)),
                "fraud_rate": rate(len(rejected_level)),
            },
            "risk": {
                "high_risk_purchases": len(high_risk),
                "flagged_purchases": len(rejected_level),
                "average_fraud_score": round(sum(p.fraud_score for p in purchases) / total, 2) if total else 0.0,
            },
            "generated_at": utcnow(),
        }
