"""
구매 영수증 검증 API 라우터
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from iap_guard.core.models import DeviceSignals
from iap_guard.schemas.purchase import ReceiptValidationRequest, ReceiptValidationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/purchases", tags=["purchases"])
security = HTTPBearer(auto_error=False)

# main.py 에서 주입
auth_service = None  # type: ignore
receipt_validator = None  # type: ignore


def set_dependencies(auth_svc, validator) -> None:
    """의존성 설정 (main.py에서 호출)"""
    global auth_service, receipt_validator
    auth_service = auth_svc
    receipt_validator = validator


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """현재 사용자 정보를 가져오는 의존성"""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="인증 토큰이 필요합니다.")
    if auth_service is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="인증 서비스가 초기화되지 않았습니다.")
    return await auth_service.verify_auth(credentials)


@router.post("/validate-receipt", response_model=ReceiptValidationResponse)
async def validate_receipt(
    request: ReceiptValidationRequest,
    user=Depends(get_current_user),
):
    """App Store 영수증 검증 후 프리미엄 권한 부여"""
    if receipt_validator is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="영수증 검증 서비스가 초기화되지 않았습니다.")

    result = await receipt_validator.validate(
        user_id=user.id,
        receipt_data=request.receipt_data,
        claimed_product_id=request.product_id,
        device=DeviceSignals(jailbreak_risk=request.jailbreak_risk, device_id=request.device_id),
    )
    logger.info(
        "영수증 검증 응답: user=%s transaction=%s score=%s flagged=%s",
        user.id,
        result.transaction_id,
        result.fraud_score,
        result.flagged_for_review,
    )
    return ReceiptValidationResponse(
        purchase_id=result.purchase_id,
        expiry_date=result.expiry_date,
        fraud_score=result.fraud_score,
        premium_tier=result.premium_tier,
    )
