# ------------------------------------------------------------
# aggregator.py - 영화별 평균 평점/투표 수 집계기
# ------------------------------------------------------------
# 리뷰 생성/수정/삭제 때마다 호출되어 movies 집계를 갱신한다.
# 세 연산 모두 "읽기 → 계산 → 쓰기" 이므로, 같은 영화 ID에 대해서는
# 반드시 직렬화해야 한다 (그렇지 않으면 동시 요청끼리 갱신이 유실됨).
# 서로 다른 영화는 락을 공유하지 않으므로 완전히 병렬로 진행된다.

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Optional

from .db import AGGREGATE_LOCK_TIMEOUT
from .deadline import Deadline
from .domain import AVERAGE_STEP, MAX_RATING, MIN_RATING, MovieAggregate, round2_ceiling, validate_rating
from .errors import DeadlineExceededError, NotFoundError
from .stores import MovieStore

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0  # 락을 잡고 있거나 기다리는 스레드 수


class KeyedLocks:
    """
    키(영화 ID)별 재진입 락 레지스트리.

    - 같은 스레드가 중첩해서 잡을 수 있음 (서비스 계층 + 집계기)
    - 잡고 있거나 기다리는 스레드가 없어지면 항목을 지워 메모리가 카탈로그 크기만큼 늘지 않음
    """

    def __init__(self, default_timeout: float = AGGREGATE_LOCK_TIMEOUT):
        self.default_timeout = default_timeout
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str, deadline: Optional[Deadline] = None):
        deadline = deadline or Deadline.none()
        deadline.check(f"lock {key}")
        remaining = deadline.remaining()
        timeout = self.default_timeout if remaining is None else min(remaining, self.default_timeout)

        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=timeout):
                logger.warning("timed out after %.2fs waiting for movie lock %s", timeout, key)
                raise DeadlineExceededError(f"timed out waiting for movie {key}")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def __len__(self):
        with self._guard:
            return len(self._entries)


# 프로세스 전역 락 레지스트리 (모든 요청/세션이 공유)
movie_locks = KeyedLocks()


def _bounded(average: Decimal) -> Decimal:
    return max(MIN_RATING, min(MAX_RATING, average)).quantize(AVERAGE_STEP)


class RatingAggregator:
    """
    영화 집계의 산술/일관성 규칙을 담당합니다.

    평균은 매번 소수 둘째 자리에서 올림(ROUND_CEILING) 합니다. 반올림(half-up)으로
    바꾸면 기존에 저장된 평균과 어긋나므로 이 정책을 유지해야 합니다.
    """

    def __init__(self, movies: MovieStore, locks: Optional[KeyedLocks] = None):
        self.movies = movies
        self.locks = locks if locks is not None else movie_locks

    def apply_new_review(self, movie_id: str, rating, deadline: Optional[Deadline] = None) -> MovieAggregate:
        rating = validate_rating(rating)
        deadline = deadline or Deadline.none()
        with self.locks.hold(movie_id, deadline):
            current = self.movies.find_by_id(movie_id) or MovieAggregate.zero(movie_id)
            deadline.check("apply new review")

            votes = current.vote_count + 1
            average = round2_ceiling(current.average_rating * current.vote_count + rating, votes)
            return self._store(current, average, votes)

    def apply_modified_review(
        self, movie_id: str, old_rating, new_rating, deadline: Optional[Deadline] = None
    ) -> MovieAggregate:
        old_rating = validate_rating(old_rating)
        new_rating = validate_rating(new_rating)
        deadline = deadline or Deadline.none()
        with self.locks.hold(movie_id, deadline):
            current = self._require_votes(movie_id)
            deadline.check("apply modified review")

            votes = current.vote_count
            average = round2_ceiling(current.average_rating * votes - old_rating + new_rating, votes)
            return self._store(current, average, votes)

    def apply_deleted_review(self, movie_id: str, rating, deadline: Optional[Deadline] = None) -> MovieAggregate:
        rating = validate_rating(rating)
        deadline = deadline or Deadline.none()
        with self.locks.hold(movie_id, deadline):
            current = self._require_votes(movie_id)
            deadline.check("apply deleted review")

            votes = current.vote_count - 1
            if votes == 0:
                # 마지막 리뷰가 지워지면 (0.00, 0) 으로 초기화. 행은 남겨 둔다
                return self._store(current, MovieAggregate.zero(movie_id).average_rating, 0)
            average = round2_ceiling(current.average_rating * current.vote_count - rating, votes)
            return self._store(current, average, votes)

    def _require_votes(self, movie_id: str) -> MovieAggregate:
        # 수정/삭제는 기존 투표가 있어야만 의미가 있음
        current = self.movies.find_by_id(movie_id)
        if current is None or current.vote_count < 1:
            raise NotFoundError(f"Movie {movie_id} has no votes.")
        return current

    def _store(self, current: MovieAggregate, average: Decimal, votes: int) -> MovieAggregate:
        # 읽은 버전을 그대로 넘겨 저장소가 버전 확인 후 갱신하도록 함
        updated = current.model_copy(update={"average_rating": _bounded(average), "vote_count": votes})
        logger.debug(
            "movie %s: (%s, %d) -> (%s, %d)",
            current.id, current.average_rating, current.vote_count, updated.average_rating, updated.vote_count,
        )
        return self.movies.save(updated)
