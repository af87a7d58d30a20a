"""
공통 응답 모델 및 예외 클래스
"""
from typing import Generic, TypeVar, Optional, Any, Dict
from pydantic import BaseModel, ConfigDict
import logging

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ErrorKind:
    """클라이언트에 노출되는 오류 종류"""
    UNAUTHENTICATED = "unauthenticated"
    INVALID_ARGUMENT = "invalid-argument"
    ALREADY_EXISTS = "already-exists"
    PERMISSION_DENIED = "permission-denied"
    NOT_FOUND = "not-found"
    INTERNAL = "internal"


class APIResponse(BaseModel, Generic[T]):
    """표준 API 응답 모델"""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "success",
                "data": {"key": "value"},
                "message": "작업이 성공적으로 완료되었습니다."
            }
        }
    )

    status: str  # "success" or "error"
    data: Optional[T] = None
    message: Optional[str] = None
    error_code: Optional[str] = None


# 커스텀 예외 클래스들
class BusinessException(Exception):
    """비즈니스 로직 예외"""
    def __init__(self, message: str, error_code: str = None, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class AuthenticationException(BusinessException):
    """인증 관련 예외"""
    def __init__(self, message: str = "인증에 실패했습니다"):
        super().__init__(message, ErrorKind.UNAUTHENTICATED, 401)


class AuthorizationException(BusinessException):
    """권한 관련 예외"""
    def __init__(self, message: str = "접근 권한이 없습니다"):
        super().__init__(message, ErrorKind.PERMISSION_DENIED, 403)


class NotFoundException(BusinessException):
    """리소스 찾을 수 없음 예외"""
    def __init__(self, message: str = "요청한 리소스를 찾을 수 없습니다"):
        super().__init__(message, ErrorKind.NOT_FOUND, 404)


class ExternalServiceException(BusinessException):
    """외부 서비스 호출 예외 (재시도 가능)"""
    def __init__(self, service_name: str, message: str = None):
        msg = message or f"{service_name} 서비스 호출에 실패했습니다"
        super().__init__(msg, ErrorKind.INTERNAL, 502)


class InvalidReceiptException(BusinessException):
    """영수증 검증 실패"""
    def __init__(self, message: str = "유효하지 않은 영수증입니다", apple_status: Optional[int] = None):
        super().__init__(message, ErrorKind.INVALID_ARGUMENT, 400)
        self.apple_status = apple_status


class ProductMismatchException(BusinessException):
    """영수증 상품과 요청 상품 불일치"""
    def __init__(self, claimed: str, actual: str):
        super().__init__("Product ID mismatch", ErrorKind.INVALID_ARGUMENT, 400)
        self.claimed = claimed
        self.actual = actual


class DuplicateReceiptException(BusinessException):
    """이미 처리된 거래"""
    def __init__(self, transaction_id: str):
        super().__init__("이미 처리된 거래입니다", ErrorKind.ALREADY_EXISTS, 409)
        self.transaction_id = transaction_id


class FraudRejectedException(BusinessException):
    """사기 점수 초과로 거절된 거래"""
    def __init__(self, fraud_score: int):
        super().__init__("Transaction flagged for security review", ErrorKind.PERMISSION_DENIED, 403)
        self.fraud_score = fraud_score


# 응답 헬퍼 함수들
def success_response(data: Any = None, message: str = "성공") -> APIResponse:
    """성공 응답 생성"""
    return APIResponse(status="success", data=data, message=message)


def error_response(
    message: str = "오류가 발생했습니다",
    error_code: str = None,
    data: Any = None
) -> APIResponse:
    """오류 응답 생성"""
    return APIResponse(
        status="error",
        message=message,
        error_code=error_code,
        data=data
    )


# 로깅 헬퍼
def log_operation(operation: str, user_id: str = None, data: Dict = None):
    """작업 로깅"""
    log_data = {
        "operation": operation,
        "user_id": user_id,
        **(data or {})
    }
    logger.info(f"Operation: {operation}", extra=log_data)
