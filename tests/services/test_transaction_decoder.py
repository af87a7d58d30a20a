"""TransactionDecoder 테스트"""
from datetime import datetime, timezone

import pytest

from jws_helpers import transaction_claims

from iap_guard.core.models import NotificationType
from iap_guard.services.transaction_decoder import TransactionDecodeError, TransactionDecoder


decoder = TransactionDecoder()


def test_decode_notification_maps_known_and_unknown_types():
    envelope = decoder.decode_notification({
        "notificationType": "DID_RENEW",
        "subtype": "BILLING_RECOVERY",
        "notificationUUID": "abc",
        "data": {"signedTransactionInfo": "tx", "environment": "Production"},
    })
    assert envelope.notification_type is NotificationType.DID_RENEW
    assert envelope.subtype == "BILLING_RECOVERY"
    assert envelope.signed_transaction_info == "tx"
    assert envelope.environment == "Production"

    unknown = decoder.decode_notification({"notificationType": "TEST"})
    assert unknown.notification_type is NotificationType.UNKNOWN
    assert unknown.raw_type == "TEST"


def test_decode_transaction_reads_offer_flags_and_auto_renew():
    expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
    claims = transaction_claims("tx-1", original_transaction_id="orig-1", expires=expires, offerType=1)

    info = decoder.decode_transaction(claims, {"autoRenewStatus": 1})

    assert info.transaction_id == "tx-1"
    assert info.original_transaction_id == "orig-1"
    assert info.expiry_date == expires
    assert info.is_subscription is True
    assert info.is_in_intro_offer_period is True
    assert info.is_trial_period is True
    assert info.is_promotional is False
    assert info.auto_renew_status is True


def test_decode_transaction_promotional_offer():
    claims = transaction_claims("tx-2", offerType=2, offerIdentifier="winback")

    info = decoder.decode_transaction(claims)

    assert info.is_promotional is True
    assert info.promotional_offer_id == "winback"
    assert info.auto_renew_status is False


def test_decode_transaction_requires_ids():
    with pytest.raises(TransactionDecodeError):
        decoder.decode_transaction({"productId": "p"})


def test_decode_receipt_picks_latest_entry():
    response = {
        "status": 0,
        "environment": "Sandbox",
        "receipt": {"bundle_id": "com.example.app"},
        "latest_receipt_info": [
            {
                "transaction_id": "old",
                "original_transaction_id": "orig",
                "product_id": "com.example.plus.monthly",
                "purchase_date_ms": "1700000000000",
                "expires_date_ms": "1702592000000",
            },
            {
                "transaction_id": "new",
                "original_transaction_id": "orig",
                "product_id": "com.example.plus.monthly",
                "purchase_date_ms": "1702592000000",
                "expires_date_ms": "1705270400000",
                "is_trial_period": "false",
                "promotional_offer_id": "spring",
            },
        ],
        "pending_renewal_info": [{"original_transaction_id": "orig", "auto_renew_status": "1"}],
    }

    info = decoder.decode_receipt(response)

    assert info.transaction_id == "new"
    assert info.is_subscription is True
    assert info.is_trial_period is False
    assert info.is_promotional is True
    assert info.auto_renew_status is True
    assert info.bundle_id == "com.example.app"


def test_decode_receipt_falls_back_to_in_app():
    response = {
        "status": 0,
        "receipt": {"in_app": [{"transaction_id": "c1", "product_id": "coins", "purchase_date_ms": "1"}]},
    }

    info = decoder.decode_receipt(response)

    assert info.transaction_id == "c1"
    assert info.original_transaction_id == "c1"
    assert info.is_subscription is False


@pytest.mark.parametrize("response", [
    {"status": 0},
    {"status": 0, "latest_receipt_info": [{"transaction_id": "x", "product_id": "p", "purchase_date_ms": "abc"}]},
])
def test_decode_receipt_rejects_unusable_responses(response):
    with pytest.raises(TransactionDecodeError):
        decoder.decode_receipt(response)
