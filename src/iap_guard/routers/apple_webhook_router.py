"""
App Store Server Notifications V2 웹훅 라우터

전송 계층 인증은 없고 페이로드 서명으로만 출처를 확인한다.
응답 코드는 WebhookOutcome 에서 response_status_for 로 결정한다.
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from iap_guard.core.responses import ErrorKind, error_response, success_response
from iap_guard.services.webhook_processor import WebhookStatus, response_status_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks", "apple"])

# main.py 에서 주입
webhook_processor = None  # type: ignore


def set_dependencies(processor) -> None:
    global webhook_processor
    webhook_processor = processor


@router.get("/apple")
async def apple_webhook_get():
    return success_response(data={"ok": True}, message="apple webhook alive")


@router.post("/apple")
async def apple_webhook(request: Request):
    raw = await request.body()
    logger.info("[APPLE] webhook received: len=%s", len(raw))

    if webhook_processor is None:
        logger.error("[APPLE] webhook processor not initialized")
        return JSONResponse(
            status_code=500,
            content=error_response(message="webhook processor unavailable", error_code=ErrorKind.INTERNAL).model_dump(),
        )

    outcome = await webhook_processor.process(raw, request.headers)
    status_code = response_status_for(outcome)
    body = {
        "status": outcome.status.value,
        "notification_type": outcome.notification_type,
        "notification_uuid": outcome.notification_uuid,
        "detail": outcome.detail,
    }

    if outcome.status is WebhookStatus.REJECTED:
        content = error_response(message="invalid signature", error_code=ErrorKind.UNAUTHENTICATED, data=body)
    elif outcome.status is WebhookStatus.FAILED:
        content = error_response(message="error processing webhook", error_code=ErrorKind.INTERNAL, data=body)
    else:
        content = success_response(data=body, message="apple webhook processed")

    return JSONResponse(status_code=status_code, content=content.model_dump())
