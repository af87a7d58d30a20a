"""ReceiptValidator 구매 검증 흐름 테스트"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from jws_helpers import to_millis

from iap_guard.core.models import DeviceSignals, PurchaseRecord
from iap_guard.core.responses import (
    DuplicateReceiptException,
    ExternalServiceException,
    FraudRejectedException,
    InvalidReceiptException,
    ProductMismatchException,
)
from iap_guard.services.app_store_client import AppStoreAPIError
from iap_guard.services.receipt_validator import ReceiptValidator
from iap_guard.services.transaction_decoder import TransactionDecoder


PRODUCT_ID = "com.example.premium.monthly"


class StubAppStoreClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = 0

    async def verify_receipt(self, receipt_data):
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.response


def _receipt(transaction_id="tx-1", product_id=PRODUCT_ID, **entry_fields):
    now = datetime.now(timezone.utc)
    entry = {
        "transaction_id": transaction_id,
        "original_transaction_id": transaction_id,
        "product_id": product_id,
        "purchase_date_ms": str(to_millis(now)),
        "expires_date_ms": str(to_millis(now + timedelta(days=30))),
    }
    entry.update(entry_fields)
    return {"status": 0, "environment": "Sandbox", "latest_receipt_info": [entry]}


@pytest.fixture
def make_validator(store, entitlements, scorer):
    def _make(client):
        return ReceiptValidator(client, TransactionDecoder(), scorer, store, entitlements, store, velocity_window_hours=24)
    return _make


@pytest.mark.asyncio
async def test_valid_receipt_records_purchase_and_grants(store, make_validator):
    validator = make_validator(StubAppStoreClient(_receipt()))

    result = await validator.validate("u1", "receipt", PRODUCT_ID, DeviceSignals(jailbreak_risk=0.1, device_id="d1"))

    assert result.transaction_id == "tx-1"
    assert result.premium_tier == "premium"
    assert result.fraud_score == 4
    assert result.flagged_for_review is False
    record = store.purchases["tx-1"]
    assert record.user_id == "u1"
    assert record.device_id == "d1"
    assert record.fraud_score == 4
    assert (await store.get_entitlement("u1")).is_premium is True


@pytest.mark.asyncio
async def test_same_receipt_twice_is_rejected_as_duplicate(store, make_validator):
    validator = make_validator(StubAppStoreClient(_receipt()))
    await validator.validate("u1", "receipt", PRODUCT_ID)

    with pytest.raises(DuplicateReceiptException):
        await validator.validate("u2", "receipt", PRODUCT_ID)

    assert len(store.purchases) == 1
    assert (await store.get_entitlement("u2")).is_premium is False


@pytest.mark.asyncio
async def test_product_mismatch(store, make_validator):
    validator = make_validator(StubAppStoreClient(_receipt(product_id="com.example.basic.monthly")))

    with pytest.raises(ProductMismatchException) as exc_info:
        await validator.validate("u1", "receipt", PRODUCT_ID)

    assert exc_info.value.message == "Product ID mismatch"
    assert store.purchases == {}


@pytest.mark.asyncio
async def test_apple_status_error_is_invalid_receipt(make_validator):
    validator = make_validator(StubAppStoreClient({"status": 21003}))

    with pytest.raises(InvalidReceiptException) as exc_info:
        await validator.validate("u1", "receipt", PRODUCT_ID)

    assert exc_info.value.apple_status == 21003


@pytest.mark.asyncio
async def test_empty_receipt_is_rejected_without_calling_apple(make_validator):
    client = StubAppStoreClient(_receipt())
    validator = make_validator(client)

    with pytest.raises(InvalidReceiptException):
        await validator.validate("u1", "", PRODUCT_ID)

    assert client.calls == 0


@pytest.mark.asyncio
async def test_app_store_unreachable_is_external_error(make_validator):
    validator = make_validator(StubAppStoreClient(error=AppStoreAPIError("down", 0, code="network_error")))

    with pytest.raises(ExternalServiceException):
        await validator.validate("u1", "receipt", PRODUCT_ID)


async def _seed_trial_on_device(store, device_id="shared-device"):
    await store.create_purchase_if_absent(PurchaseRecord(
        transaction_id="other-trial",
        original_transaction_id="other-trial",
        user_id="someone-else",
        product_id=PRODUCT_ID,
        purchase_date=datetime.now(timezone.utc),
        is_trial_period=True,
        device_id=device_id,
    ))


@pytest.mark.asyncio
async def test_mid_risk_purchase_is_granted_and_flagged(store, make_validator):
    await _seed_trial_on_device(store)
    validator = make_validator(StubAppStoreClient(_receipt(is_trial_period="true")))

    result = await validator.validate("u1", "receipt", PRODUCT_ID, DeviceSignals(jailbreak_risk=0.9, device_id="shared-device"))

    # device 36 + promo abuse 20
    assert result.fraud_score == 56
    assert result.flagged_for_review is True
    assert store.flagged["tx-1"].fraud_score == 56
    assert (await store.get_entitlement("u1")).is_premium is True


@pytest.mark.asyncio
async def test_high_risk_purchase_is_rejected_and_logged(store, make_validator):
    await _seed_trial_on_device(store)
    long_ago = datetime.now(timezone.utc) - timedelta(days=40)
    for index in range(4):
        await store.create_purchase_if_absent(PurchaseRecord(
            transaction_id=f"refunded-{index}",
            original_transaction_id=f"refunded-{index}",
            user_id="u1",
            product_id=PRODUCT_ID,
            purchase_date=long_ago,
            created_at=long_ago,
            refunded=True,
        ))

    validator = make_validator(StubAppStoreClient(_receipt(is_trial_period="true")))

    with pytest.raises(FraudRejectedException) as exc_info:
        await validator.validate("u1", "receipt", PRODUCT_ID, DeviceSignals(jailbreak_risk=0.9, device_id="shared-device"))

    # device 36 + promo abuse 20 + refunds 20
    assert exc_info.value.fraud_score == 76
    assert "tx-1" not in store.purchases
    assert [log.event_type for log in store.fraud_logs] == ["high_fraud_score"]
    assert (await store.get_entitlement("u1")).is_premium is False


def _fail_once(store, method_name):
    original = getattr(store, method_name)
    calls = {"count": 0}

    async def _flaky(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise ExternalServiceException("Supabase", "connection reset")
        return await original(*args, **kwargs)

    setattr(store, method_name, _flaky)
    return calls


@pytest.mark.asyncio
async def test_retry_after_failed_grant_restores_entitlement(store, make_validator):
    _fail_once(store, "save_entitlement")
    validator = make_validator(StubAppStoreClient(_receipt()))

    with pytest.raises(ExternalServiceException):
        await validator.validate("u1", "receipt", PRODUCT_ID)
    assert "tx-1" in store.purchases
    assert (await store.get_entitlement("u1")).is_premium is False

    with pytest.raises(DuplicateReceiptException):
        await validator.validate("u1", "receipt", PRODUCT_ID)

    assert (await store.get_entitlement("u1")).is_premium is True
    assert store.grants == {("u1", "tx-1")}
    assert len(store.purchases) == 1


@pytest.mark.asyncio
async def test_retry_by_other_user_does_not_grant(store, make_validator):
    _fail_once(store, "save_entitlement")
    validator = make_validator(StubAppStoreClient(_receipt()))

    with pytest.raises(ExternalServiceException):
        await validator.validate("u1", "receipt", PRODUCT_ID)
    with pytest.raises(DuplicateReceiptException):
        await validator.validate("u2", "receipt", PRODUCT_ID)

    assert (await store.get_entitlement("u2")).is_premium is False
    assert ("u2", "tx-1") not in store.grants


@pytest.mark.asyncio
async def test_retry_after_failed_flag_creates_review_item(store, make_validator):
    await _seed_trial_on_device(store)
    _fail_once(store, "create_flagged_transaction_if_absent")
    validator = make_validator(StubAppStoreClient(_receipt(is_trial_period="true")))
    device = DeviceSignals(jailbreak_risk=0.9, device_id="shared-device")

    with pytest.raises(ExternalServiceException):
        await validator.validate("u1", "receipt", PRODUCT_ID, device)
    assert "tx-1" not in store.flagged

    with pytest.raises(DuplicateReceiptException):
        await validator.validate("u1", "receipt", PRODUCT_ID, device)

    assert store.flagged["tx-1"].fraud_score == 56
    assert store.flagged["tx-1"].user_id == "u1"


@pytest.mark.asyncio
@pytest.mark.parametrize("second_user", ["u1", "u2"])
async def test_concurrent_validation_of_same_receipt_grants_once(store, make_validator, second_user):
    validator = make_validator(StubAppStoreClient(_receipt()))

    results = await asyncio.gather(
        validator.validate("u1", "receipt", PRODUCT_ID),
        validator.validate(second_user, "receipt", PRODUCT_ID),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    duplicates = [r for r in results if isinstance(r, DuplicateReceiptException)]
    assert len(successes) == 1
    assert len(duplicates) == 1
    assert len(store.purchases) == 1
    assert len(store.grants) == 1
