"""
애플리케이션 설정 관리
"""
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_FILE_PATH = Path(__file__).resolve()


def _collect_env_files(file_path: Path) -> tuple[Path, ...]:
    """환경 파일 후보를 가까운 디렉터리부터 수집"""

    collected: list[Path] = []
    seen: set[Path] = set()

    for directory in file_path.parents:
        for name in (".env", ".env.local"):
            candidate = directory / name
            if candidate.exists() and candidate not in seen:
                collected.append(candidate)
                seen.add(candidate)

    return tuple(collected)


_ENV_FILES = _collect_env_files(_FILE_PATH)


def _load_dotenv_files() -> None:
    """프로젝트 전체에서 활용할 .env 파일들을 순차적으로 로드"""

    for dotenv_path in _ENV_FILES:
        load_dotenv(dotenv_path, override=False)


_load_dotenv_files()


class Settings(BaseSettings):
    """애플리케이션 설정"""

    model_config = SettingsConfigDict(
        env_file=tuple(str(path) for path in _ENV_FILES) if _ENV_FILES else None,
        case_sensitive=True,
        extra="allow",
    )

    # 서버 설정
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # 로깅 설정
    LOG_LEVEL: str = "INFO"

    # Supabase 설정
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    # App Store 영수증 검증 설정
    APPLE_SHARED_SECRET: Optional[str] = None
    APPLE_VERIFY_RECEIPT_URL: str = "https://buy.itunes.apple.com/verifyReceipt"
    APPLE_VERIFY_RECEIPT_SANDBOX_URL: str = "https://sandbox.itunes.apple.com/verifyReceipt"
    APPLE_RECEIPT_TIMEOUT_SECONDS: float = 10.0

    # App Store Server Notifications 서명 검증 설정
    APPLE_ROOT_CERT_PATHS: List[str] = []
    APPLE_BUNDLE_ID: Optional[str] = None

    # 사기 점수 임계값 (review <= score < reject 이면 검토 대상)
    FRAUD_REVIEW_THRESHOLD: int = 50
    FRAUD_REJECT_THRESHOLD: int = 75

    # 사기 점수 신호별 가중치 및 포화 지점
    FRAUD_WEIGHT_DEVICE: float = 40.0
    FRAUD_WEIGHT_PROMO_ABUSE: float = 20.0
    FRAUD_WEIGHT_REFUNDS: float = 20.0
    FRAUD_WEIGHT_VELOCITY: float = 20.0
    FRAUD_WEIGHT_PRIOR_FRAUD: float = 10.0
    FRAUD_REFUND_SATURATION: int = 4
    FRAUD_VELOCITY_BASELINE: int = 3
    FRAUD_VELOCITY_SATURATION: int = 3
    FRAUD_VELOCITY_WINDOW_HOURS: int = 24
    FRAUD_PROMO_ABUSE_MIN_ACCOUNTS: int = 1
    FRAUD_PRIOR_FRAUD_SATURATION: int = 2

    # 환불 남용 임계값 (count > ALERT 이면 경보, count > SUSPEND 이면 정지)
    REFUND_ALERT_THRESHOLD: int = 2
    REFUND_SUSPEND_THRESHOLD: int = 3

    @field_validator("FRAUD_REJECT_THRESHOLD")
    @classmethod
    def validate_reject_threshold(cls, v, info):
        review = info.data.get("FRAUD_REVIEW_THRESHOLD", 0)
        if not 0 < v <= 100:
            raise ValueError("FRAUD_REJECT_THRESHOLD는 1~100 사이여야 합니다")
        if review >= v:
            raise ValueError("FRAUD_REVIEW_THRESHOLD는 FRAUD_REJECT_THRESHOLD보다 작아야 합니다")
        return v

    @field_validator("REFUND_SUSPEND_THRESHOLD")
    @classmethod
    def validate_refund_thresholds(cls, v, info):
        alert = info.data.get("REFUND_ALERT_THRESHOLD", 0)
        if v < alert:
            raise ValueError("REFUND_SUSPEND_THRESHOLD는 REFUND_ALERT_THRESHOLD 이상이어야 합니다")
        return v

    @property
    def supabase_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY)


# 전역 설정 인스턴스
settings = Settings()
