# ------------------------------------------------------------
# main.py - FastAPI 앱 팩토리/미들웨어/예외 핸들러/라우터 등록 진입점
# ------------------------------------------------------------

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import Base, engine, LOG_LEVEL
from .errors import MovieRecError
from .routers import movies, reviews

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(bind=engine) -> FastAPI:
    """
    애플리케이션 생성.

    - Base.metadata.create_all(): 앱 시작(lifespan) 시점에 없는 테이블만 생성
      (마이그레이션 도구 없이 간편 초기화). 앱 객체를 만들기만 해서는 DB에 접속하지 않음
    - bind 를 바꾸면 다른 DB(테스트용 SQLite 등)로 테이블을 만든다
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=bind)
        yield

    app = FastAPI(title="Movie Review & Recommendation API", lifespan=lifespan)

    # 개발 단계에서는 모든 오리진 허용, 운영에서는 특정 도메인으로 제한
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 코어 예외 → HTTP 응답
    # NotFound=404, InvalidInput=400, Conflict=409, Transient=503(재시도 가능)
    @app.exception_handler(MovieRecError)
    def handle_movierec_error(request: Request, exc: MovieRecError):
        if exc.status_code >= 500:
            logger.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "timestamp": datetime.now(timezone.utc).isoformat()},
        )

    app.include_router(movies.router)
    app.include_router(reviews.router)

    # 상태 확인(헬스체크)용 루트 엔드포인트
    @app.get("/")
    def root():
        return {"ok": True, "service": "movie-review-recommender"}

    return app


# uvicorn movierec.main:app
app = create_app()
