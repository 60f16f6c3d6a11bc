# ------------------------------------------------------------
# stores.py - 영화 집계/리뷰 저장소 인터페이스와 SQLAlchemy 구현
# ------------------------------------------------------------
# 코어(aggregator/recommender)는 Protocol 타입에만 의존하고,
# 실제 DB 접근은 Sql*Store 가 담당한다. 저장소 밖으로는 ORM 객체 대신
# domain.py 의 불변 값 객체만 반환한다.

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, Set

from sqlalchemy import exc as sa_exc, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .domain import MovieAggregate, Review
from .errors import ConcurrentUpdateError, ConflictError, TransientError
from .models import Movie as MovieRow, Review as ReviewRow

logger = logging.getLogger(__name__)


class MovieStore(Protocol):
    def find_by_id(self, movie_id: str) -> Optional[MovieAggregate]: ...

    def save(self, aggregate: MovieAggregate) -> MovieAggregate: ...

    def find_all_sorted_by_rating_descending(self) -> Sequence[MovieAggregate]: ...


class ReviewStore(Protocol):
    def find_by_id(self, review_id: str) -> Optional[Review]: ...

    def find_by_user_and_movie(self, user_id: str, movie_id: str) -> Optional[Review]: ...

    def find_all_by_movie(self, movie_id: str) -> Set[Review]: ...

    def find_all_by_movie_rating_range_excluding_user(
        self, movie_id: str, min_rating: Decimal, max_rating: Decimal, user_id: str
    ) -> Sequence[Review]: ...

    def find_all_by_movie_descending(self, movie_id: str) -> Sequence[Review]: ...

    def find_all_by_user_excluding_movie(
        self, user_id: str, excluded_movie_id: str, limit: int
    ) -> Sequence[Review]: ...

    def find_all_by_user(self, user_id: str) -> Sequence[Review]: ...

    def save(self, review: Review) -> Review: ...

    def delete_by_id(self, review_id: str) -> None: ...


@contextmanager
def db_errors(what: str, integrity_error=ConflictError):
    """
    DB 예외를 코어 예외로 변환합니다.

    - 타임아웃/연결 오류 → TransientError (작업 전체 재시도 가능)
    - 버전 불일치(StaleDataError) → ConcurrentUpdateError
    - 무결성 제약 위반 → integrity_error (저장소마다 의미가 다름)
    """
    try:
        yield
    except StaleDataError as e:
        raise ConcurrentUpdateError(f"{what}: concurrent update detected") from e
    except sa_exc.IntegrityError as e:
        raise integrity_error(f"{what}: constraint violated") from e
    except (sa_exc.OperationalError, sa_exc.TimeoutError) as e:
        logger.warning("%s failed with a transient database error: %s", what, e)
        raise TransientError(f"{what}: database unavailable") from e
    except sa_exc.DBAPIError as e:
        if not e.connection_invalidated:
            raise
        logger.warning("%s lost its database connection: %s", what, e)
        raise TransientError(f"{what}: database connection lost") from e


# ------------------------------------------------------------
# SqlMovieStore: movies 테이블
# ------------------------------------------------------------
class SqlMovieStore:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, movie_id: str) -> Optional[MovieAggregate]:
        with db_errors("find movie"):
            row = self.db.get(MovieRow, movie_id)
        return None if row is None else MovieAggregate.model_validate(row)

    def save(self, aggregate: MovieAggregate) -> MovieAggregate:
        """
        집계를 저장합니다.

        - version 이 None: 새 행 INSERT. 그 사이 다른 쪽이 먼저 만들었다면 PK 충돌
        - version 이 있음: UPDATE ... WHERE version = :읽은 버전
          → 읽은 뒤 다른 세션/프로세스가 갱신했다면 0행 갱신
        두 경우 모두 ConcurrentUpdateError 로 알리고, 서비스 계층이 처음부터 다시 읽어 재시도한다.
        """
        if aggregate.version is None:
            with db_errors("create movie", integrity_error=ConcurrentUpdateError):
                row = MovieRow(id=aggregate.id, average_rating=aggregate.average_rating, vote_count=aggregate.vote_count)
                self.db.add(row)
                self.db.flush()
            return MovieAggregate.model_validate(row)

        with db_errors("save movie", integrity_error=ConcurrentUpdateError):
            result = self.db.execute(
                update(MovieRow)
                .where(MovieRow.id == aggregate.id, MovieRow.version == aggregate.version)
                .values(
                    average_rating=aggregate.average_rating,
                    vote_count=aggregate.vote_count,
                    version=aggregate.version + 1,
                )
                # 세션에 남아 있는 같은 행 객체에도 새 값을 반영
                .execution_options(synchronize_session="evaluate")
            )
        if result.rowcount != 1:
            logger.warning("movie %s changed since version %d was read", aggregate.id, aggregate.version)
            raise ConcurrentUpdateError(f"save movie {aggregate.id}: concurrent update detected")
        return aggregate.model_copy(update={"version": aggregate.version + 1})

    def find_all_sorted_by_rating_descending(self) -> List[MovieAggregate]:
        # 동점은 투표 수 내림차순 → ID 오름차순 (같은 데이터면 항상 같은 순서)
        with db_errors("list movies"):
            rows = (
                self.db.query(MovieRow)
                .order_by(MovieRow.average_rating.desc(), MovieRow.vote_count.desc(), MovieRow.id.asc())
                .all()
            )
        return [MovieAggregate.model_validate(r) for r in rows]

    def find_all_by_ids(self, movie_ids: Sequence[str]) -> List[MovieAggregate]:
        with db_errors("list movies by id"):
            rows = self.db.query(MovieRow).filter(MovieRow.id.in_(list(movie_ids))).all()
        return [MovieAggregate.model_validate(r) for r in rows]


# ------------------------------------------------------------
# SqlReviewStore: reviews 테이블
# ------------------------------------------------------------
class SqlReviewStore:
    def __init__(self, db: Session):
        self.db = db

    def _descending(self, query):
        # 평점 내림차순, 동점은 리뷰 ID 순
        return query.order_by(ReviewRow.rating.desc(), ReviewRow.id.asc())

    def find_by_id(self, review_id: str) -> Optional[Review]:
        with db_errors("find review"):
            row = self.db.get(ReviewRow, review_id)
        return None if row is None else Review.model_validate(row)

    def find_by_user_and_movie(self, user_id: str, movie_id: str) -> Optional[Review]:
        with db_errors("find review by user and movie"):
            row = (
                self.db.query(ReviewRow)
                .filter(ReviewRow.user_id == user_id, ReviewRow.movie_id == movie_id)
                .one_or_none()
            )
        return None if row is None else Review.model_validate(row)

    def find_all_by_movie(self, movie_id: str) -> Set[Review]:
        with db_errors("list reviews of movie"):
            rows = self.db.query(ReviewRow).filter(ReviewRow.movie_id == movie_id).all()
        return {Review.model_validate(r) for r in rows}

    def find_all_by_movie_rating_range_excluding_user(
        self, movie_id: str, min_rating: Decimal, max_rating: Decimal, user_id: str
    ) -> List[Review]:
        with db_errors("list reviews in rating band"):
            rows = self._descending(
                self.db.query(ReviewRow).filter(
                    ReviewRow.movie_id == movie_id,
                    ReviewRow.rating.between(min_rating, max_rating),
                    ReviewRow.user_id != user_id,
                )
            ).all()
        return [Review.model_validate(r) for r in rows]

    def find_all_by_movie_descending(self, movie_id: str) -> List[Review]:
        with db_errors("list reviews of movie"):
            rows = self._descending(self.db.query(ReviewRow).filter(ReviewRow.movie_id == movie_id)).all()
        return [Review.model_validate(r) for r in rows]

    def find_all_by_user_excluding_movie(self, user_id: str, excluded_movie_id: str, limit: int) -> List[Review]:
        with db_errors("list reviews of user"):
            rows = (
                self._descending(
                    self.db.query(ReviewRow).filter(
                        ReviewRow.user_id == user_id,
                        ReviewRow.movie_id != excluded_movie_id,
                    )
                )
                .limit(limit)
                .all()
            )
        return [Review.model_validate(r) for r in rows]

    def find_all_by_user(self, user_id: str) -> List[Review]:
        with db_errors("list reviews of user"):
            rows = self._descending(self.db.query(ReviewRow).filter(ReviewRow.user_id == user_id)).all()
        return [Review.model_validate(r) for r in rows]

    def save(self, review: Review) -> Review:
        # id 가 없으면 INSERT, 있으면 평점/설명만 UPDATE (movie_id/user_id 는 불변)
        with db_errors("save review"):
            row = None if review.id is None else self.db.get(ReviewRow, review.id)
            if row is None:
                row = ReviewRow(
                    id=review.id or str(uuid.uuid4()),
                    movie_id=review.movie_id,
                    user_id=review.user_id,
                )
                self.db.add(row)
            row.rating = review.rating
            row.description = review.description
            self.db.flush()
        return Review.model_validate(row)

    def delete_by_id(self, review_id: str) -> None:
        with db_errors("delete review"):
            self.db.query(ReviewRow).filter(ReviewRow.id == review_id).delete(synchronize_session="fetch")
            self.db.flush()
