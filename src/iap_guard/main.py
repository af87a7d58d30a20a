from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from contextlib import asynccontextmanager
import logging
from datetime import datetime

from iap_guard import __version__
from iap_guard.core.config import settings
from iap_guard.core.factory import ServiceFactory
from iap_guard.core.middleware import setup_exception_handlers
from iap_guard.core.responses import success_response
from iap_guard.routers import admin_router, apple_webhook_router, purchase_router

# 로깅 설정
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # 서비스 초기화 및 라우터 의존성 주입
    ServiceFactory.configure_dependencies()
    db_helper = ServiceFactory.get_db_helper()
    auth_service = ServiceFactory.get_auth_service()

    purchase_router.set_dependencies(auth_service, ServiceFactory.get_receipt_validator())
    apple_webhook_router.set_dependencies(ServiceFactory.get_webhook_processor())
    admin_router.set_dependencies(auth_service, ServiceFactory.get_review_service())

    await db_helper.log_system_event(
        event_type='server_start',
        event_data={'status': 'success', 'timestamp': datetime.now().isoformat(), 'version': __version__}
    )

    yield

    await db_helper.log_system_event(
        event_type='server_stop',
        event_data={'status': 'success', 'timestamp': datetime.now().isoformat()}
    )


app = FastAPI(
    title="IAP Guard Server",
    description="App Store 인앱 결제 영수증 검증, 웹훅 처리, 사기 탐지 서버",
    version=__version__,
    lifespan=lifespan,
    debug=settings.DEBUG
)

# 예외 처리 미들웨어 설정
setup_exception_handlers(app)

# CORS 미들웨어 추가
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    return success_response(
        data={
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
            "environment": "development" if settings.DEBUG else "production"
        },
        message="헬스 체크"
    )


# 라우터 등록
app.include_router(purchase_router.router)  # 영수증 검증
app.include_router(apple_webhook_router.router)  # App Store Server Notifications
app.include_router(admin_router.router)  # 관리자 검토

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
