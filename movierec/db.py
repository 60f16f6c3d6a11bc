# -------------------------------------------------------
# db.py - 환경설정 로딩, SQLAlchemy 엔진/세션 및 FastAPI 의존성 정의
# -------------------------------------------------------

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv

from .deadline import Deadline

# .env 파일의 환경변수를 현재 프로세스 환경에 주입
# - 운영환경에서는 .env 대신 실제 환경변수로 주입
load_dotenv()

# -----------------------------
# DB 접속 정보 (기본값은 로컬 개발용)
# -----------------------------
DB_USER = os.getenv("DB_USER", "movierec")
DB_PASSWORD = os.getenv("DB_PASSWORD", "movierecpw")
DB_HOST = os.getenv("DB_HOST", "127.0.0.1")
DB_PORT = os.getenv("DB_PORT", "3306")
DB_NAME = os.getenv("DB_NAME", "moviesdb")

# DATABASE_URL이 있으면 그대로 사용 (sqlite/postgres 등 다른 백엔드로 교체할 때)
# 없으면 PyMySQL 드라이버 URL을 조립
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"mysql+pymysql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}?charset=utf8mb4",
)
DB_ECHO = os.getenv("DB_ECHO", "0") == "1"

# -----------------------------
# 리뷰/추천 코어 설정
# -----------------------------
# 추천 개수 기본값과 허용 범위 (HTTP 계층에서 Query로 검증)
RECOMMEND_DEFAULT_AMOUNT = int(os.getenv("RECOMMEND_DEFAULT_AMOUNT", "5"))
RECOMMEND_MIN_AMOUNT = int(os.getenv("RECOMMEND_MIN_AMOUNT", "5"))
RECOMMEND_MAX_AMOUNT = int(os.getenv("RECOMMEND_MAX_AMOUNT", "10"))

# 영화별 락 대기 한도(초). 호출자가 deadline을 주지 않았을 때 사용
AGGREGATE_LOCK_TIMEOUT = float(os.getenv("AGGREGATE_LOCK_TIMEOUT", "5.0"))

# 낙관적 버전 충돌(다른 프로세스와 경합) 시 재시도 횟수 상한
AGGREGATE_MAX_RETRIES = int(os.getenv("AGGREGATE_MAX_RETRIES", "3"))

# HTTP 요청 한 건이 코어 작업에 쓸 수 있는 최대 시간(초). 저장소 호출 사이에 확인
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10.0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def make_engine(url: str = DATABASE_URL, **kwargs):
    """
    URL에 맞는 옵션으로 엔진을 생성합니다.

    - MySQL: pool_pre_ping / pool_recycle 로 'server has gone away' 방지
    - SQLite: 스레드 간 커넥션 공유를 허용 (테스트/로컬 개발용)
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 3600)
    return create_engine(url, echo=DB_ECHO, **kwargs)


engine = make_engine()

# autocommit=False: 집계 갱신 + 리뷰 저장을 한 트랜잭션으로 묶기 위해 명시적 commit() 사용
# expire_on_commit=False: 커밋 후에도 반환한 값 객체를 다시 조회하지 않도록
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# 모든 ORM 모델이 상속받는 베이스 클래스
Base = declarative_base()


def get_db():
    """
    FastAPI 의존성 주입용 DB 세션 제공자(Generator)

    1) 요청이 들어오면 SessionLocal()로 세션 생성
    2) 핸들러에 주입(yield)
    3) 응답 후 finally 블록에서 세션 종료(close)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_deadline():
    """요청마다 REQUEST_TIMEOUT 초짜리 마감 토큰을 주입 (FastAPI 의존성)."""
    return Deadline(timeout=REQUEST_TIMEOUT)
