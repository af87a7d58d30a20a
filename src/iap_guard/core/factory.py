"""
서비스 팩토리 - 의존성 주입 설정
"""
from supabase import Client as SyncClient, create_client
import logging

from iap_guard.core.config import settings
from iap_guard.core.container import container
from iap_guard.core.interfaces import (
    IAuditLog, IAuthService, IEntitlementStore, INoticeSender, IPurchaseLedger
)
from iap_guard.core.locks import UserLockRegistry
from iap_guard.database_helper import DatabaseHelper
from iap_guard.services.app_store_client import AppStoreClient
from iap_guard.services.auth_service import AuthService
from iap_guard.services.entitlement_service import EntitlementService
from iap_guard.services.fraud_scorer import FraudScorer, FraudWeights
from iap_guard.services.receipt_validator import ReceiptValidator
from iap_guard.services.refund_abuse_detector import RefundAbuseDetector
from iap_guard.services.review_service import ReviewService
from iap_guard.services.signature_verifier import SignatureVerifier, load_root_certificates
from iap_guard.services.transaction_decoder import TransactionDecoder
from iap_guard.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)


class ServiceFactory:
    """서비스 의존성 등록 및 초기화"""

    @staticmethod
    def configure_dependencies():
        """의존성 주입 컨테이너 설정"""
        if not settings.supabase_configured:
            raise RuntimeError("SUPABASE_URL / SUPABASE_ANON_KEY 가 설정되지 않았습니다.")

        # 외부 클라이언트 생성
        supabase_client = create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
        supabase_admin = None
        if settings.SUPABASE_SERVICE_ROLE_KEY:
            supabase_admin = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
        else:
            logger.warning("SUPABASE_SERVICE_ROLE_KEY가 설정되지 않아 anon 클라이언트로 저장소에 접근합니다.")
        container.register_singleton(SyncClient, supabase_client)

        # DatabaseHelper 하나가 모든 저장소 인터페이스를 구현
        db_helper = DatabaseHelper(supabase_client, supabase_admin)
        container.register_singleton(DatabaseHelper, db_helper)
        container.register_singleton(IPurchaseLedger, db_helper)
        container.register_singleton(IEntitlementStore, db_helper)
        container.register_singleton(IAuditLog, db_helper)
        container.register_singleton(INoticeSender, db_helper)

        if not settings.APPLE_SHARED_SECRET:
            logger.warning("[APPLE] APPLE_SHARED_SECRET이 설정되지 않았습니다. 자동 갱신 구독 영수증 검증이 실패할 수 있습니다.")
        container.register_singleton(AppStoreClient, AppStoreClient(
            shared_secret=settings.APPLE_SHARED_SECRET,
            production_url=settings.APPLE_VERIFY_RECEIPT_URL,
            sandbox_url=settings.APPLE_VERIFY_RECEIPT_SANDBOX_URL,
            timeout=settings.APPLE_RECEIPT_TIMEOUT_SECONDS,
        ))

        trusted_roots = load_root_certificates(settings.APPLE_ROOT_CERT_PATHS)
        if not trusted_roots:
            logger.warning("[APPLE] APPLE_ROOT_CERT_PATHS가 비어 있어 모든 웹훅이 서명 검증에 실패합니다.")
        container.register_singleton(SignatureVerifier, SignatureVerifier(
            trusted_roots,
            expected_bundle_id=settings.APPLE_BUNDLE_ID,
        ))
        container.register_singleton(TransactionDecoder, TransactionDecoder())
        container.register_singleton(FraudScorer, FraudScorer(
            FraudWeights.from_settings(settings),
            review_threshold=settings.FRAUD_REVIEW_THRESHOLD,
            reject_threshold=settings.FRAUD_REJECT_THRESHOLD,
        ))
        container.register_singleton(UserLockRegistry, UserLockRegistry())

        auth_service = AuthService(supabase_client, db_helper)
        container.register_singleton(IAuthService, auth_service)
        container.register_singleton(AuthService, auth_service)

        # 나머지 서비스는 생성자 타입 힌트로 의존성 자동 해결
        container.register_service(EntitlementService, EntitlementService)
        container.register_service(RefundAbuseDetector, RefundAbuseDetector)
        container.register_service(ReceiptValidator, ReceiptValidator)
        container.register_service(WebhookProcessor, WebhookProcessor)
        container.register_service(ReviewService, ReviewService)

    @staticmethod
    def get_auth_service() -> IAuthService:
        """인증 서비스 조회"""
        return container.get(IAuthService)

    @staticmethod
    def get_db_helper() -> DatabaseHelper:
        """DB 헬퍼 조회"""
        return container.get(DatabaseHelper)

    @staticmethod
    def get_receipt_validator() -> ReceiptValidator:
        """영수증 검증 서비스 조회"""
        return container.get(ReceiptValidator)

    @staticmethod
    def get_webhook_processor() -> WebhookProcessor:
        """웹훅 처리 서비스 조회"""
        return container.get(WebhookProcessor)

    @staticmethod
    def get_review_service() -> ReviewService:
        """관리자 검토 서비스 조회"""
        return container.get(ReviewService)
