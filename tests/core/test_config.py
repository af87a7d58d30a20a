"""Settings 검증 테스트"""
import pytest
from pydantic import ValidationError

from iap_guard.core.config import Settings


def test_review_threshold_must_be_below_reject():
    with pytest.raises(ValidationError):
        Settings(FRAUD_REVIEW_THRESHOLD=80, FRAUD_REJECT_THRESHOLD=75)


def test_refund_thresholds_order():
    with pytest.raises(ValidationError):
        Settings(REFUND_ALERT_THRESHOLD=5, REFUND_SUSPEND_THRESHOLD=3)


def test_defaults():
    config = Settings(_env_file=None)

    assert config.FRAUD_REJECT_THRESHOLD == 75
    assert config.REFUND_SUSPEND_THRESHOLD == 3
