from typing import Any, Iterable, Optional, Set

from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from supabase import Client

from iap_guard.core.base_service import BaseService
from iap_guard.core.interfaces import IAuditLog, IAuthService
from iap_guard.core.responses import AuthenticationException


# 허용되는 관리자 역할
ADMIN_ROLES: Set[str] = {"admin", "super_admin", "owner"}


class AuthService(BaseService, IAuthService):
    """Supabase JWT 기반 인증 서비스"""

    def __init__(self, supabase_client: Client, audit_log: IAuditLog, admin_roles: Optional[Iterable[str]] = None):
        super().__init__(audit_log)
        self.supabase = supabase_client
        self.admin_roles = {role.lower() for role in (admin_roles or ADMIN_ROLES)}

    async def verify_auth(self, credentials: HTTPAuthorizationCredentials):
        """JWT 토큰 검증"""

        try:
            return await self._verify_token_internal(credentials)
        except AuthenticationException:
            raise HTTPException(status_code=401, detail="유효하지 않은 토큰입니다.")
        except Exception as e:
            self.logger.error(f"인증 실패: {e}")
            raise HTTPException(status_code=401, detail="인증에 실패했습니다.")

    async def _verify_token_internal(self, credentials: HTTPAuthorizationCredentials):
        """내부 토큰 검증 로직"""
        try:
            response = self.supabase.auth.get_user(credentials.credentials)

            if response is None or response.user is None:
                raise AuthenticationException("유효하지 않은 토큰입니다")

            return response.user

        except AuthenticationException:
            raise
        except Exception as e:
            self.logger.error(f"토큰 검증 중 오류: {e}")
            raise AuthenticationException("인증 처리 중 오류가 발생했습니다")

    def is_admin(self, user: Any) -> bool:
        """app_metadata 의 role / roles / is_admin 으로 관리자 여부 판단"""
        metadata = getattr(user, "app_metadata", None) or {}
        if not isinstance(metadata, dict):
            return False

        if metadata.get("is_admin") is True:
            return True

        roles: Set[str] = set()
        role_value = metadata.get("role")
        if isinstance(role_value, str):
            roles.add(role_value.lower())

        roles_field = metadata.get("roles")
        if isinstance(roles_field, list):
            roles.update(str(value).lower() for value in roles_field if isinstance(value, str))
        elif isinstance(roles_field, str):
            roles.update(part.strip().lower() for part in roles_field.split(",") if part.strip())

        return any(role in self.admin_roles for role in roles)
