# ------------------------------------------------------------
# services.py - 리뷰 작성/수정/삭제, 영화 조회, 추천의 진입점
# ------------------------------------------------------------
# 라우터는 이 모듈만 호출한다. 리뷰 변경은 "집계 갱신 + 리뷰 저장 + 커밋"을
# 하나의 단계로 묶고, 어느 한쪽이라도 실패하면 롤백해 아무 일도 없었던 것으로 만든다.

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Set, TypeVar

from sqlalchemy.orm import Session

from .aggregator import KeyedLocks, RatingAggregator
from .db import AGGREGATE_MAX_RETRIES
from .deadline import Deadline
from .domain import MovieAggregate, MovieSummary, Review, ReviewResult, validate_rating
from .errors import ConcurrentUpdateError, ConflictError, InvalidInputError, MovieRecError, NotFoundError
from .recommender import RecommendationEngine
from .stores import SqlMovieStore, SqlReviewStore, db_errors

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidInputError(f"{field} should not be empty.")
    return str(value).strip()


def _run_locked(
    db: Session,
    locks: KeyedLocks,
    movie_id: str,
    what: str,
    work: Callable[[], T],
    deadline: Deadline,
    retries: int = AGGREGATE_MAX_RETRIES,
) -> T:
    """
    movie_id 락을 잡은 채로 work() 실행 후 커밋합니다.

    - 세션에 커밋되지 않은 쓰기가 남아 있으면 안 됨 (시작 시 롤백)
    - 버전 충돌(다른 프로세스와 경합)은 롤백 후 retries 번까지 처음부터 다시 시도
    - 그 밖의 예외는 롤백 후 그대로 전파
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            with locks.hold(movie_id, deadline):
                # 락 밖에서 읽은 스냅샷/캐시를 버리고 새 트랜잭션에서 다시 읽음
                db.rollback()
                result = work()
                deadline.check(what)
                with db_errors(f"commit {what}"):
                    db.commit()
                return result
        except ConcurrentUpdateError:
            db.rollback()
            if attempt > retries:
                logger.error("%s on movie %s: giving up after %d attempts", what, movie_id, attempt)
                raise
            logger.warning("%s on movie %s: concurrent update, retrying (%d/%d)", what, movie_id, attempt, retries)
        except MovieRecError:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("%s on movie %s failed", what, movie_id)
            raise


class ReviewService:
    def __init__(self, db: Session, locks: Optional[KeyedLocks] = None):
        self.db = db
        self.movies = SqlMovieStore(db)
        self.reviews = SqlReviewStore(db)
        self.aggregator = RatingAggregator(self.movies, locks)

    @property
    def locks(self) -> KeyedLocks:
        return self.aggregator.locks

    def record_review(
        self, movie_id: str, user_id: str, rating, description: str, deadline: Optional[Deadline] = None
    ) -> ReviewResult:
        """새 리뷰를 저장하고 영화 집계에 한 표를 추가합니다."""
        movie_id = _require_text(movie_id, "MovieId")
        user_id = _require_text(user_id, "UserId")
        rating = validate_rating(rating)
        description = _require_text(description, "Description")
        deadline = deadline or Deadline.none()

        def work() -> ReviewResult:
            if self.reviews.find_by_user_and_movie(user_id, movie_id) is not None:
                raise ConflictError("User cannot create multiple reviews for same movie.")
            aggregate = self.aggregator.apply_new_review(movie_id, rating, deadline)
            deadline.check("record review")
            review = self.reviews.save(
                Review(movie_id=movie_id, user_id=user_id, rating=rating, description=description)
            )
            return ReviewResult(review=review, movie=MovieSummary.of(aggregate))

        result = _run_locked(self.db, self.locks, movie_id, "record review", work, deadline)
        logger.info("user %s reviewed movie %s (%s)", user_id, movie_id, rating)
        return result

    def edit_review(
        self,
        review_id: str,
        new_rating,
        new_description: str,
        user_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> ReviewResult:
        """
        평점/설명을 수정합니다. movie_id/user_id 는 바꿀 수 없습니다.

        평점이 그대로면 집계는 건드리지 않습니다.
        """
        new_rating = validate_rating(new_rating)
        new_description = _require_text(new_description, "Description")
        deadline = deadline or Deadline.none()
        movie_id = self._owned_review(review_id, user_id).movie_id

        def work() -> ReviewResult:
            existing = self._owned_review(review_id, user_id)
            if existing.rating != new_rating:
                aggregate = self.aggregator.apply_modified_review(movie_id, existing.rating, new_rating, deadline)
            else:
                aggregate = self.movies.find_by_id(movie_id) or MovieAggregate.zero(movie_id)
            deadline.check("edit review")
            review = self.reviews.save(existing.model_copy(update={"rating": new_rating, "description": new_description}))
            return ReviewResult(review=review, movie=MovieSummary.of(aggregate))

        result = _run_locked(self.db, self.locks, movie_id, "edit review", work, deadline)
        logger.info("review %s on movie %s edited (%s)", review_id, movie_id, new_rating)
        return result

    def remove_review(self, review_id: str, user_id: Optional[str] = None, deadline: Optional[Deadline] = None) -> None:
        """리뷰를 지우고 영화 집계에서 한 표를 뺍니다."""
        deadline = deadline or Deadline.none()
        movie_id = self._owned_review(review_id, user_id).movie_id

        def work() -> None:
            existing = self._owned_review(review_id, user_id)
            self.aggregator.apply_deleted_review(movie_id, existing.rating, deadline)
            deadline.check("remove review")
            self.reviews.delete_by_id(review_id)

        _run_locked(self.db, self.locks, movie_id, "remove review", work, deadline)
        logger.info("review %s on movie %s removed", review_id, movie_id)

    def reviews_for_movie(self, movie_id: str) -> List[Review]:
        found = self.reviews.find_all_by_movie_descending(movie_id)
        if not found:
            raise NotFoundError("No reviews for this movie.")
        return list(found)

    def reviews_for_user(self, user_id: str) -> List[Review]:
        return list(self.reviews.find_all_by_user(user_id))

    def has_reviewed(self, user_id: str, movie_id: str) -> bool:
        return self.reviews.find_by_user_and_movie(user_id, movie_id) is not None

    def _owned_review(self, review_id: str, user_id: Optional[str]) -> Review:
        # 다른 사용자의 리뷰는 "없는 리뷰"로 취급
        review = self.reviews.find_by_id(review_id)
        if review is None or (user_id is not None and review.user_id != user_id):
            raise NotFoundError("Review not found")
        return review


class MovieService:
    def __init__(self, db: Session, locks: Optional[KeyedLocks] = None):
        self.db = db
        self.movies = SqlMovieStore(db)
        self.reviews = SqlReviewStore(db)
        self.aggregator = RatingAggregator(self.movies, locks)
        self.engine = RecommendationEngine(self.reviews, self.movies)

    def get_movie(self, movie_id: str, deadline: Optional[Deadline] = None) -> MovieSummary:
        """영화 요약을 반환합니다. 처음 보는 영화면 (0.00, 0) 행을 만들어 둡니다."""
        movie_id = _require_text(movie_id, "MovieId")
        found = self.movies.find_by_id(movie_id)
        if found is not None:
            return MovieSummary.of(found)

        def work() -> MovieAggregate:
            return self.movies.find_by_id(movie_id) or self.movies.save(MovieAggregate.zero(movie_id))

        created = _run_locked(self.db, self.aggregator.locks, movie_id, "create movie", work, deadline or Deadline.none())
        return MovieSummary.of(created)

    def get_movies(self, movie_ids: Sequence[str]) -> List[MovieSummary]:
        ids = [_require_text(m, "MovieId") for m in movie_ids]
        if not ids:
            raise InvalidInputError("Movie id list should not be empty")
        found = self.movies.find_all_by_ids(ids)
        if not found:
            raise NotFoundError("No movies found.")
        return [MovieSummary.of(m) for m in found]

    def recommend(
        self, movie_id: str, user_id: str, amount: int, deadline: Optional[Deadline] = None
    ) -> Set[MovieSummary]:
        movie_id = _require_text(movie_id, "MovieId")
        user_id = _require_text(user_id, "UserId")
        return self.engine.recommend(movie_id, user_id, amount, deadline)
