# ------------------------------------------------------------
# recommender.py - 리뷰 패턴 기반 영화 추천 엔진
# ------------------------------------------------------------
# 읽기 전용. 집계를 절대 수정하지 않으며 락도 잡지 않는다.
# 동시에 갱신 중인 집계/리뷰를 읽을 수 있으나, 추천은 참고용이므로 허용.

from __future__ import annotations

import logging
from collections import Counter
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from .deadline import Deadline
from .domain import MovieAggregate, MovieSummary, Review, clamp_rating
from .errors import InvalidInputError, NotFoundError
from .stores import MovieStore, ReviewStore

logger = logging.getLogger(__name__)

# 내 평점 기준 ±1.5 안에서 평가한 사용자를 "취향이 비슷한 사용자"로 간주
RATING_BAND = Decimal("1.5")


class Tier(Enum):
    PEER_BAND = "peer_band"            # 내 평점 ±1.5 밴드 안의 리뷰어
    MOVIE_WIDE = "movie_wide"          # 이 영화의 모든 리뷰어
    TALLY = "tally"                    # 리뷰어들의 다른 고평점 영화 집계
    GLOBAL_FALLBACK = "global_fallback"  # 전체 평균 평점 상위
    EXHAUSTED = "exhausted"            # 종료


class _Run:
    """recommend() 한 번의 진행 상태."""

    def __init__(self, movie_id: str, user_id: str, amount: int, deadline: Deadline):
        self.movie_id = movie_id
        self.user_id = user_id
        self.amount = amount
        self.deadline = deadline
        self.peers: List[Review] = []
        self.chosen: Dict[str, MovieSummary] = {}  # 선택 순서 유지
        self.reviewed: Optional[Set[str]] = None   # 요청자가 이미 리뷰한 영화 ID (지연 로딩)

    @property
    def full(self) -> bool:
        return len(self.chosen) >= self.amount

    def choose(self, aggregate: MovieAggregate) -> None:
        self.chosen.setdefault(aggregate.id, MovieSummary.of(aggregate))


class RecommendationEngine:
    """
    대상 영화/요청 사용자/개수로 "다른 영화" 추천 집합을 만듭니다.

    단계(Tier)는 PEER_BAND → MOVIE_WIDE → TALLY → GLOBAL_FALLBACK → EXHAUSTED 순서로만
    진행되며, 각 단계는 앞 단계가 쓸 만한 후보를 만들지 못했을 때만 시도합니다.
    빈 결과는 예외가 아니라 빈 시퀀스 검사로 다음 단계를 고릅니다.
    """

    def __init__(self, reviews: ReviewStore, movies: MovieStore):
        self.reviews = reviews
        self.movies = movies

    def recommend(
        self, movie_id: str, user_id: str, amount: int, deadline: Optional[Deadline] = None
    ) -> Set[MovieSummary]:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidInputError(f"amount must be a positive integer, got {amount!r}")

        run = _Run(movie_id, user_id, amount, deadline or Deadline.none())
        steps = {
            Tier.PEER_BAND: self._peer_band,
            Tier.MOVIE_WIDE: self._movie_wide,
            Tier.TALLY: self._tally,
            Tier.GLOBAL_FALLBACK: self._global_fallback,
        }

        tier = Tier.PEER_BAND
        while tier is not Tier.EXHAUSTED:
            run.deadline.check("recommend")
            next_tier = steps[tier](run)
            logger.debug("recommend %s for %s: %s -> %s", movie_id, user_id, tier.value, next_tier.value)
            tier = next_tier

        if not run.chosen:
            raise NotFoundError("No recommendations available.")

        logger.info("recommend %s for %s: %d movie(s)", movie_id, user_id, len(run.chosen))
        return set(run.chosen.values())

    # ------------------------------
    # 단계별 처리 (다음 단계를 반환)
    # ------------------------------
    def _peer_band(self, run: _Run) -> Tier:
        own = self.reviews.find_by_user_and_movie(run.user_id, run.movie_id)
        if own is None:
            return Tier.MOVIE_WIDE

        low = clamp_rating(own.rating - RATING_BAND)
        high = clamp_rating(own.rating + RATING_BAND)
        run.deadline.check("recommend")
        run.peers = list(
            self.reviews.find_all_by_movie_rating_range_excluding_user(run.movie_id, low, high, run.user_id)
        )
        return Tier.TALLY if run.peers else Tier.MOVIE_WIDE

    def _movie_wide(self, run: _Run) -> Tier:
        run.peers = [r for r in self.reviews.find_all_by_movie_descending(run.movie_id) if r.user_id != run.user_id]
        return Tier.TALLY if run.peers else Tier.GLOBAL_FALLBACK

    def _tally(self, run: _Run) -> Tier:
        # 후보 영화 → 추천한 (서로 다른) 리뷰어 수. Counter는 처음 본 순서를 유지
        tally: Counter = Counter()
        seen_peers = set()
        for peer in run.peers:
            if peer.user_id in seen_peers:
                continue
            seen_peers.add(peer.user_id)

            run.deadline.check("recommend")
            picks = self.reviews.find_all_by_user_excluding_movie(peer.user_id, run.movie_id, run.amount)
            for pick in {p.movie_id: p for p in picks}.values():
                if self._has_reviewed(run, pick.movie_id):
                    continue
                tally[pick.movie_id] += 1

        if not tally:
            # 리뷰어들이 본 영화를 요청자가 전부 이미 리뷰함
            logger.info("recommend %s for %s: peer tally empty, using top rated", run.movie_id, run.user_id)
            return Tier.GLOBAL_FALLBACK

        for aggregate in self._rank(run, tally):
            if run.full:
                break
            if aggregate.id == run.movie_id:
                continue
            run.choose(aggregate)

        # 후보가 amount 보다 적으면 전체 상위로 채움
        return Tier.EXHAUSTED if run.full else Tier.GLOBAL_FALLBACK

    def _global_fallback(self, run: _Run) -> Tier:
        if not run.chosen:
            logger.info("recommend %s for %s: no peer candidates, using top rated", run.movie_id, run.user_id)
        for aggregate in self.movies.find_all_sorted_by_rating_descending():
            if run.full:
                break
            # 아무도 평가하지 않은 (0.00, 0) 영화는 추천 대상이 아님
            if not aggregate.is_rated or aggregate.id == run.movie_id or aggregate.id in run.chosen:
                continue
            if self._has_reviewed(run, aggregate.id):
                continue
            run.choose(aggregate)
        return Tier.EXHAUSTED

    # ------------------------------
    # 보조 함수
    # ------------------------------
    def _rank(self, run: _Run, tally: Counter) -> Sequence[MovieAggregate]:
        """빈도 내림차순 → 평균 평점 내림차순 → 영화 ID 오름차순."""
        aggregates = []
        for movie_id in tally:
            run.deadline.check("recommend")
            aggregates.append(self.movies.find_by_id(movie_id) or MovieAggregate.zero(movie_id))
        aggregates.sort(key=lambda a: a.id)
        aggregates.sort(key=lambda a: (tally[a.id], a.average_rating), reverse=True)
        return aggregates

    def _has_reviewed(self, run: _Run, movie_id: str) -> bool:
        if run.reviewed is None:
            run.reviewed = {r.movie_id for r in self.reviews.find_all_by_user(run.user_id)}
        return movie_id in run.reviewed
