from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from iap_guard.core.models import ReviewDecision


class ReviewDecisionRequest(BaseModel):
    """검토 대상 거래 승인/거절 요청"""
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str = Field(..., alias="transactionId", min_length=1, description="검토할 거래 ID")
    decision: ReviewDecision = Field(..., description="approve 또는 reject")
    admin_note: str = Field("", alias="adminNote", max_length=1000, description="관리자 메모")
