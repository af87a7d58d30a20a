"""App Store verifyReceipt API 클라이언트"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx


logger = logging.getLogger(__name__)


class AppStoreAPIError(RuntimeError):
    """verifyReceipt 호출 자체가 실패한 경우 (네트워크, HTTP 오류)"""

    def __init__(
        self,
        message: str,
        status_code: int,
        payload: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        self.code = code


class AppStoreClient:
    """App Store 영수증 검증 비동기 클라이언트

    운영 엔드포인트를 먼저 호출하고, 21007(샌드박스 영수증) 응답일 때만
    샌드박스 엔드포인트로 한 번 재시도한다.
    """

    STATUS_OK = 0
    STATUS_SANDBOX_RECEIPT = 21007

    STATUS_MESSAGES: Dict[int, str] = {
        21000: "The App Store could not read the JSON object you provided.",
        21002: "The data in the receipt-data property was malformed or missing.",
        21003: "The receipt could not be authenticated.",
        21004: "The shared secret you provided does not match the shared secret on file.",
        21005: "The receipt server is not currently available.",
        21006: "This receipt is valid but the subscription has expired.",
        21007: "This receipt is from the test environment.",
        21008: "This receipt is from the production environment.",
        21009: "Internal data access error.",
        21010: "This receipt could not be authorized.",
    }

    def __init__(
        self,
        shared_secret: Optional[str],
        production_url: str = "https://buy.itunes.apple.com/verifyReceipt",
        sandbox_url: str = "https://sandbox.itunes.apple.com/verifyReceipt",
        timeout: float = 10.0,
    ) -> None:
        self.shared_secret = shared_secret
        self.production_url = production_url
        self.sandbox_url = sandbox_url
        self.timeout = timeout

    async def verify_receipt(self, receipt_data: str) -> Dict[str, Any]:
        """영수증을 검증하고 App Store 응답 본문을 그대로 반환한다.

        status 가 0 이 아니어도 예외를 던지지 않는다. 판단은 호출자가 한다.
        """

        payload: Dict[str, Any] = {
            "receipt-data": receipt_data,
            "exclude-old-transactions": True,
        }
        if self.shared_secret:
            payload["password"] = self.shared_secret

        result = await self._post(self.production_url, payload)
        if result.get("status") == self.STATUS_SANDBOX_RECEIPT:
            logger.info("[APPLE] 샌드박스 영수증 감지, 샌드박스 엔드포인트로 재검증")
            result = await self._post(self.sandbox_url, payload)
        return result

    @classmethod
    def describe_status(cls, status: Any) -> str:
        try:
            code = int(status)
        except (TypeError, ValueError):
            return "Unknown receipt validation status."
        return cls.STATUS_MESSAGES.get(code, f"Unknown receipt validation status: {code}")

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
        except httpx.RequestError as exc:
            logger.warning("[APPLE] verifyReceipt network error: url=%s error=%s", url, exc)
            raise AppStoreAPIError(
                "App Store 영수증 검증 서버에 연결하지 못했습니다.",
                status_code=0,
                payload={"error": {"message": str(exc)}},
                code="network_error",
            ) from exc

        body = self._safe_json(response)
        if response.status_code >= 400:
            logger.error(
                "[APPLE] verifyReceipt failed: url=%s status=%s payload=%s",
                url,
                response.status_code,
                body,
            )
            raise AppStoreAPIError(
                "App Store 영수증 검증 요청이 실패했습니다.",
                response.status_code,
                body,
                code="http_error",
            )

        if "status" not in body:
            raise AppStoreAPIError(
                "App Store 응답에 status 가 없습니다.",
                response.status_code,
                body,
                code="parse_error",
            )
        return body

    @staticmethod
    def _safe_json(response: httpx.Response) -> Dict[str, Any]:
        """JSON 파싱 실패 시 안전하게 fallback"""

        try:
            payload = response.json()
            return payload if isinstance(payload, dict) else {"data": payload}
        except ValueError:
            return {"error": {"message": response.text}}
