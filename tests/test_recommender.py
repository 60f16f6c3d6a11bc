"""
Tests for RecommendationEngine tier selection.

What we test
------------
1. Peer-band tier - only reviewers within +-1.5 of the requester count as peers.
2. Movie-wide tier - used when the requester has no review or the band is empty.
3. Tally - ranked by number of peers, then average rating, then movie id;
   movies the requester already reviewed never appear.
4. Global fallback - top rated movies, skipping unrated and reviewed ones;
   also fills a short candidate list up to ``amount``.
5. NotFound when nothing can be recommended; InvalidInput for bad amounts.
6. Idempotence and deadline handling.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from movierec.deadline import Deadline
from movierec.domain import MovieAggregate
from movierec.errors import CancelledError, InvalidInputError, NotFoundError
from movierec.recommender import RecommendationEngine


@pytest.fixture
def recommender(review_store, movie_store) -> RecommendationEngine:
    return RecommendationEngine(review_store, movie_store)


def ids(summaries):
    return {s.id for s in summaries}


class TestPeerBandTier:
    def test_scenario_peer_in_band_and_fill_from_top_rated(self, recommender, seed):
        seed("M", "U", "8.0")
        seed("M", "P1", "7.5")
        seed("N1", "P1", "9.0")
        seed("M", "P2", "6.0")   # 밴드 [6.5, 9.5] 밖
        seed("N2", "P2", "8.5")

        result = recommender.recommend("M", "U", 5)

        # N1 은 밴드 안 리뷰어의 추천, N2 는 전체 상위에서 채움. M 자신은 제외
        assert ids(result) == {"N1", "N2"}

    def test_only_band_peers_are_tallied(self, recommender, seed):
        seed("M", "U", "8.0")
        seed("M", "P1", "7.5")
        seed("N1", "P1", "9.0")
        seed("M", "P2", "6.0")
        seed("N2", "P2", "8.5")

        result = recommender.recommend("M", "U", 1)

        assert ids(result) == {"N1"}

    def test_band_is_clamped_at_ten(self, recommender, seed):
        seed("M", "U", "9.5")
        seed("M", "P1", "10.0")
        seed("N1", "P1", "7.0")
        seed("Top", "X", "9.9")

        assert ids(recommender.recommend("M", "U", 1)) == {"N1"}


class TestMovieWideTier:
    def test_used_when_requester_has_no_review(self, recommender, seed):
        seed("M", "P1", "2.0")
        seed("N1", "P1", "6.0")
        seed("Top", "X", "9.9")

        assert ids(recommender.recommend("M", "U", 1)) == {"N1"}

    def test_used_when_band_is_empty(self, recommender, seed):
        seed("M", "U", "10.0")
        seed("M", "P1", "1.0")       # 밴드 [8.5, 10.0] 밖
        seed("N1", "P1", "5.0")
        seed("Top", "X", "9.9")

        assert ids(recommender.recommend("M", "U", 1)) == {"N1"}


class TestTally:
    def test_ranked_by_peer_count(self, recommender, seed):
        seed("M", "U", "8.0")
        for peer in ("P1", "P2", "P3"):
            seed("M", peer, "8.0")
            seed("Common", peer, "6.0")
        seed("Solo", "P1", "10.0")

        assert ids(recommender.recommend("M", "U", 1)) == {"Common"}

    def test_ties_break_on_average_then_id(self, recommender, seed):
        seed("M", "U", "8.0")
        seed("M", "P1", "8.0")
        seed("C", "P1", "9.0")
        seed("B", "P1", "7.0")
        seed("M", "P2", "8.0")
        seed("C", "P2", "9.0")
        seed("A", "P2", "7.0")

        assert ids(recommender.recommend("M", "U", 1)) == {"C"}
        # A 와 B 는 빈도/평균이 같으므로 ID 순
        assert ids(recommender.recommend("M", "U", 2)) == {"C", "A"}

    def test_already_reviewed_movies_are_skipped(self, recommender, seed):
        seed("M", "U", "8.0")
        seed("Seen", "U", "3.0")
        seed("M", "P1", "8.0")
        seed("Seen", "P1", "10.0")
        seed("Fresh", "P1", "6.0")

        result = recommender.recommend("M", "U", 5)

        assert "Seen" not in ids(result)
        assert "M" not in ids(result)
        assert "Fresh" in ids(result)

    def test_peer_picks_capped_at_amount(self, recommender, seed):
        seed("M", "U", "8.0")
        seed("M", "P1", "8.0")
        for i, rating in enumerate(("9.0", "8.0", "7.0")):
            seed(f"N{i}", "P1", rating)

        # P1 의 상위 2편만 후보가 됨
        assert ids(recommender.recommend("M", "U", 2)) == {"N0", "N1"}


class TestGlobalFallback:
    def test_no_reviews_for_movie(self, recommender, seed):
        seed("A", "X", "9.0")
        seed("B", "X", "7.0")
        seed("C", "Y", "8.0")

        assert ids(recommender.recommend("M", "U", 2)) == {"A", "C"}

    def test_everything_peers_liked_is_already_reviewed(self, recommender, seed):
        seed("M", "U", "8.0")
        seed("N1", "U", "5.0")
        seed("M", "P1", "8.0")
        seed("N1", "P1", "9.0")
        seed("Other", "Z", "4.0")

        assert ids(recommender.recommend("M", "U", 5)) == {"Other"}

    def test_unrated_movies_are_not_recommended(self, recommender, seed, movie_store, aggregator):
        movie_store.save(MovieAggregate.zero("Empty"))
        seed("Gone", "X", "9.0")
        aggregator.apply_deleted_review("Gone", "9.0")

        with pytest.raises(NotFoundError, match="No recommendations available"):
            recommender.recommend("M", "U", 5)

    def test_empty_catalog_is_not_found(self, recommender):
        with pytest.raises(NotFoundError):
            recommender.recommend("M", "U", 5)

    def test_target_movie_is_never_recommended(self, recommender, seed):
        seed("M", "X", "10.0")

        with pytest.raises(NotFoundError):
            recommender.recommend("M", "U", 5)


class TestArguments:
    @pytest.mark.parametrize("amount", [0, -1, True, 2.5])
    def test_bad_amount(self, recommender, review_store, amount):
        with pytest.raises(InvalidInputError):
            recommender.recommend("M", "U", amount)

    def test_cancelled(self, recommender, seed):
        seed("A", "X", "9.0")
        deadline = Deadline()
        deadline.cancel()
        with pytest.raises(CancelledError):
            recommender.recommend("M", "U", 5, deadline)


def test_recommend_is_idempotent(recommender, seed):
    seed("M", "U", "7.0")
    for peer, pick, rating in (("P1", "A", "9.0"), ("P2", "B", "8.0"), ("P3", "A", "6.0")):
        seed("M", peer, "7.0")
        seed(pick, peer, rating)
    seed("C", "Z", "9.5")

    first = recommender.recommend("M", "U", 5)
    second = recommender.recommend("M", "U", 5)

    assert first == second
    assert ids(first) == {"A", "B", "C"}
    assert all(isinstance(s.average_rating, Decimal) for s in first)
