from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ReceiptValidationRequest(BaseModel):
    """클라이언트 영수증 검증 요청"""
    model_config = ConfigDict(populate_by_name=True)

    receipt_data: str = Field(..., alias="receiptData", min_length=1, description="Base64 인코딩된 App Store 영수증")
    product_id: str = Field(..., alias="productId", min_length=1, description="구매한 상품 ID")
    jailbreak_risk: float = Field(0.0, alias="jailbreakRisk", ge=0.0, le=1.0, description="기기 탈옥/루팅 위험도")
    device_id: Optional[str] = Field(None, alias="deviceId", description="기기 식별자")


class ReceiptValidationResponse(BaseModel):
    """영수증 검증 성공 응답"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    purchase_id: str = Field(..., serialization_alias="purchaseId")
    expiry_date: Optional[datetime] = Field(None, serialization_alias="expiryDate")
    fraud_score: int = Field(..., serialization_alias="fraudScore")
    premium_tier: str = Field(..., serialization_alias="premiumTier")
