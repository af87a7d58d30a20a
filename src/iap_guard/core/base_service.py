"""
서비스 기본 클래스
"""
import logging
from typing import Dict, Any

from iap_guard.core.interfaces import IAuditLog


class BaseService:
    """모든 서비스의 기본 클래스"""

    def __init__(self, audit_log: IAuditLog):
        self.audit_log = audit_log
        self.logger = logging.getLogger(self.__class__.__name__)

    async def log_user_action(self, user_id: str, action: str, data: Dict[str, Any] = None):
        """사용자 액션 로깅"""
        try:
            await self.audit_log.log_system_event(
                user_id=user_id,
                event_type=f"user_{action}",
                event_data=data or {},
            )
        except Exception as e:
            self.logger.warning(f"액션 로깅 실패: {e}")
