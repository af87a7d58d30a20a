"""공통 테스트 픽스처"""
import pytest

from fakes import InMemoryStore
from jws_helpers import make_chain

from iap_guard.core.locks import UserLockRegistry
from iap_guard.services.entitlement_service import EntitlementService
from iap_guard.services.fraud_scorer import FraudScorer, FraudWeights
from iap_guard.services.refund_abuse_detector import RefundAbuseDetector
from iap_guard.services.signature_verifier import SignatureVerifier
from iap_guard.services.transaction_decoder import TransactionDecoder
from iap_guard.services.webhook_processor import WebhookProcessor


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def locks():
    return UserLockRegistry()


@pytest.fixture
def entitlements(store, locks):
    return EntitlementService(store, store, locks)


@pytest.fixture
def scorer():
    return FraudScorer(FraudWeights(), review_threshold=50, reject_threshold=75)


@pytest.fixture
def refund_detector(store, entitlements):
    return RefundAbuseDetector(store, entitlements, store, store, alert_threshold=2, suspend_threshold=3)


@pytest.fixture(scope="session")
def chain():
    return make_chain()


@pytest.fixture
def verifier(chain):
    return SignatureVerifier([chain.root], expected_bundle_id="com.example.app")


@pytest.fixture
def webhook_processor(verifier, store, entitlements, refund_detector):
    return WebhookProcessor(
        verifier,
        TransactionDecoder(),
        store,
        entitlements,
        refund_detector,
        store,
        store,
    )
