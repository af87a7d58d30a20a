"""
관리자 전용 API 라우터 - 사기 검토 및 환불 추적
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from iap_guard.core.responses import AuthorizationException, log_operation, success_response
from iap_guard.schemas.admin import ReviewDecisionRequest

# 의존성 주입 대상 서비스들
auth_service = None  # type: ignore
review_service = None  # type: ignore

# HTTP Bearer 인증 스키마
security = HTTPBearer(auto_error=False)


def set_dependencies(auth_svc, review_svc=None) -> None:
    """main.py에서 호출하여 서비스 인스턴스를 주입한다."""
    global auth_service, review_service
    auth_service = auth_svc
    review_service = review_svc


async def authorize_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
):
    """Supabase JWT를 검증하고 관리자 권한을 확인한다."""
    if auth_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="관리자 인증 서비스가 초기화되지 않았습니다.",
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="인증 토큰이 필요합니다.",
        )

    user = await auth_service.verify_auth(credentials)
    if not auth_service.is_admin(user):
        raise AuthorizationException("관리자 권한이 필요합니다.")

    return user


async def get_current_admin(user=Depends(authorize_admin)):
    """엔드포인트에서 관리자 정보를 활용할 수 있도록 반환."""
    if review_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="관리자 서비스 의존성이 초기화되지 않았습니다.",
        )
    return user


router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
)


@router.get("/flagged-transactions")
async def list_flagged_transactions(
    limit: int = Query(50, ge=1, le=200),
    admin_user=Depends(get_current_admin),
):
    items = await review_service.list_pending(limit)
    return success_response(data={"items": items, "count": len(items)})


@router.post("/flagged-transactions/review")
async def review_flagged_transaction(
    request: ReviewDecisionRequest,
    admin_user=Depends(get_current_admin),
):
    reviewed = await review_service.review(
        request.transaction_id,
        request.decision,
        request.admin_note,
        admin_id=getattr(admin_user, "id", None),
    )
    log_operation(
        "admin_review",
        getattr(admin_user, "id", None),
        {"transaction_id": request.transaction_id, "decision": request.decision.value},
    )
    return success_response(data=reviewed, message="검토 결과가 저장되었습니다")


@router.get("/refunds")
async def refund_tracking(
    limit: int = Query(50, ge=1, le=200),
    period: int = Query(30, ge=1, le=365, description="조회 기간(일)"),
    admin_user=Depends(get_current_admin),
):
    data = await review_service.refund_tracking(limit=limit, period_days=period)
    return success_response(data=data)


@router.get("/alerts")
async def list_unacknowledged_alerts(
    limit: int = Query(20, ge=1, le=100),
    admin_user=Depends(get_current_admin),
):
    alerts = await review_service.list_unacknowledged_alerts(limit)
    return success_response(data={"items": alerts, "count": len(alerts)})


@router.get("/fraud-dashboard")
async def fraud_dashboard(admin_user=Depends(get_current_admin)):
    return success_response(data=await review_service.fraud_dashboard())


@router.get("/subscription-analytics")
async def subscription_analytics(
    period: int = Query(30, ge=1, le=365, description="조회 기간(일)"),
    admin_user=Depends(get_current_admin),
):
    return success_response(data=await review_service.subscription_analytics(period))
