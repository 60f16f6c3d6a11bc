# ------------------------------------------------------------
# models.py - SQLAlchemy ORM 모델 정의 (movies/reviews)
# ------------------------------------------------------------

import uuid

from sqlalchemy import Column, Integer, String, Numeric, Text, ForeignKey, UniqueConstraint
from .db import Base  # Declarative Base: 모든 ORM 모델의 베이스 클래스


# ------------------------------
# Movie: 영화별 평점 집계 테이블
# ------------------------------
class Movie(Base):
    __tablename__ = "movies"

    # 외부 카탈로그(TMDB 등)에서 부여한 영화 ID. 자동 증가가 아닌 문자열 PK
    id = Column(String(64), primary_key=True, index=True)

    # 평균 평점 (소수 둘째 자리, 0.00 ~ 10.00)
    average_rating = Column(Numeric(4, 2), nullable=False, default=0)

    # 현재 유효한 리뷰 수
    vote_count = Column(Integer, nullable=False, default=0)

    # 낙관적 잠금용 버전 컬럼
    # - INSERT 시 1 로 시작. 갱신은 SqlMovieStore.save 가 UPDATE ... WHERE version = :읽은 버전 으로 수행하고
    #   0행이 갱신되면(읽은 뒤 다른 세션/프로세스가 먼저 갱신) ConcurrentUpdateError
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


# ------------------------------
# Review: 리뷰 테이블
# ------------------------------
class Review(Base):
    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # 관계(relationship) 없이 ID로만 참조. 조회는 항상 저장소 인터페이스를 통해 명시적으로 수행
    movie_id = Column(String(64), ForeignKey("movies.id"), nullable=False, index=True)

    # 사용자 관리는 외부 서비스 담당이므로 불투명한 문자열 ID만 보관
    user_id = Column(String(64), nullable=False, index=True)

    # 평점 (소수 첫째 자리, 0.0 ~ 10.0)
    rating = Column(Numeric(3, 1), nullable=False)

    description = Column(Text, nullable=False)

    # 한 사용자는 한 영화에 리뷰를 하나만 남길 수 있음
    __table_args__ = (UniqueConstraint("user_id", "movie_id", name="uix_review_user_movie"),)
