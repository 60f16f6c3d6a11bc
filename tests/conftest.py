"""
Shared pytest fixtures.

Provides:
  - ``engine`` / ``db``: a fresh in-memory SQLite database with the ORM schema.
  - ``file_session_factory``: sessions on a file-backed SQLite database,
    one connection per session (multi-worker and per-thread tests).
  - ``client``: FastAPI ``TestClient`` whose ``get_db`` uses that database.
  - ``movie_store`` / ``review_store``: thread-safe in-memory store fakes for
    aggregator and recommender unit tests.
  - ``seed``: helper that records a review through the aggregator so that the
    in-memory aggregates stay consistent with the in-memory reviews.
"""

from __future__ import annotations

import os

# 모듈 수준 엔진이 MySQL 로 접속하지 않도록 import 전에 지정
os.environ.setdefault("DATABASE_URL", "sqlite://")

import random
import threading
import time
import uuid
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from movierec.aggregator import KeyedLocks, RatingAggregator
from movierec.db import Base, get_db
from movierec.domain import MovieAggregate, Review, validate_rating
from movierec.main import create_app


# ── In-memory store fakes ─────────────────────────────────────────────────────

class MemoryMovieStore:
    """dict 기반 MovieStore. pause > 0 이면 읽은 뒤 잠깐 멈춰 경합 구간을 넓힌다."""

    def __init__(self, pause: float = 0.0):
        self.pause = pause
        self.reads = 0
        self._rows: Dict[str, MovieAggregate] = {}
        self._guard = threading.Lock()

    def find_by_id(self, movie_id: str) -> Optional[MovieAggregate]:
        with self._guard:
            self.reads += 1
            found = self._rows.get(movie_id)
        if self.pause:
            time.sleep(random.uniform(0, self.pause))
        return found

    def save(self, aggregate: MovieAggregate) -> MovieAggregate:
        with self._guard:
            self._rows[aggregate.id] = aggregate
        return aggregate

    def find_all_sorted_by_rating_descending(self) -> List[MovieAggregate]:
        with self._guard:
            rows = list(self._rows.values())
        return sorted(rows, key=lambda a: (-a.average_rating, -a.vote_count, a.id))


class MemoryReviewStore:
    def __init__(self):
        self._rows: Dict[str, Review] = {}
        self._guard = threading.Lock()

    def _all(self) -> List[Review]:
        with self._guard:
            return list(self._rows.values())

    @staticmethod
    def _descending(reviews):
        return sorted(reviews, key=lambda r: (-r.rating, r.id))

    def find_by_id(self, review_id):
        with self._guard:
            return self._rows.get(review_id)

    def find_by_user_and_movie(self, user_id, movie_id):
        for r in self._all():
            if r.user_id == user_id and r.movie_id == movie_id:
                return r
        return None

    def find_all_by_movie(self, movie_id):
        return {r for r in self._all() if r.movie_id == movie_id}

    def find_all_by_movie_rating_range_excluding_user(self, movie_id, min_rating, max_rating, user_id):
        return self._descending(
            r for r in self._all()
            if r.movie_id == movie_id and min_rating <= r.rating <= max_rating and r.user_id != user_id
        )

    def find_all_by_movie_descending(self, movie_id):
        return self._descending(r for r in self._all() if r.movie_id == movie_id)

    def find_all_by_user_excluding_movie(self, user_id, excluded_movie_id, limit):
        return self._descending(
            r for r in self._all() if r.user_id == user_id and r.movie_id != excluded_movie_id
        )[:limit]

    def find_all_by_user(self, user_id):
        return self._descending(r for r in self._all() if r.user_id == user_id)

    def save(self, review: Review) -> Review:
        if review.id is None:
            review = review.model_copy(update={"id": str(uuid.uuid4())})
        with self._guard:
            self._rows[review.id] = review
        return review

    def delete_by_id(self, review_id):
        with self._guard:
            self._rows.pop(review_id, None)


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks(default_timeout=2.0)


@pytest.fixture
def movie_store() -> MemoryMovieStore:
    return MemoryMovieStore()


@pytest.fixture
def slow_movie_store() -> MemoryMovieStore:
    # 읽기와 쓰기 사이에 최대 2ms 멈춤 → 직렬화가 없으면 갱신 유실이 쉽게 재현됨
    return MemoryMovieStore(pause=0.002)


@pytest.fixture
def review_store() -> MemoryReviewStore:
    return MemoryReviewStore()


@pytest.fixture
def aggregator(movie_store, locks) -> RatingAggregator:
    return RatingAggregator(movie_store, locks)


@pytest.fixture
def seed(aggregator, review_store):
    """``seed(movie_id, user_id, rating)`` - 집계와 리뷰를 함께 기록."""

    def _seed(movie_id: str, user_id: str, rating) -> Review:
        rating = validate_rating(rating)
        aggregator.apply_new_review(movie_id, rating)
        return review_store.save(
            Review(movie_id=movie_id, user_id=user_id, rating=rating, description=f"{user_id} on {movie_id}")
        )

    return _seed


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    """Fresh in-memory SQLite engine shared across threads via StaticPool."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """
    파일 SQLite 엔진의 세션 팩토리.

    커넥션 풀을 쓰므로 세션마다 별도 커넥션/트랜잭션을 가진다
    (다른 프로세스의 작업자, 스레드별 세션을 흉내낼 때 사용).
    """
    eng = create_engine(
        f"sqlite:///{tmp_path / 'movierec.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=eng)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=eng)
    eng.dispose()


@pytest.fixture
def client(engine, session_factory):
    app = create_app(bind=engine)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
