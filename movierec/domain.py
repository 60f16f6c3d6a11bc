# ------------------------------------------------------------
# domain.py - 코어에서 주고받는 값 객체와 평점 계산 보조 함수
# ------------------------------------------------------------
# ORM 객체(models.py)는 저장소 밖으로 내보내지 않고, 여기 정의된
# 불변(frozen) pydantic 모델로 변환해 전달한다.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_CEILING, localcontext
from typing import Optional

from pydantic import BaseModel

from .errors import InvalidInputError

MIN_RATING = Decimal("0.0")
MAX_RATING = Decimal("10.0")
RATING_STEP = Decimal("0.1")     # 리뷰 평점: 소수 첫째 자리
AVERAGE_STEP = Decimal("0.01")   # 평균 평점: 소수 둘째 자리
ZERO_AVERAGE = Decimal("0.00")


# ------------------------------------------------------------
# MovieAggregate: 영화 한 편의 평균 평점/투표 수
# ------------------------------------------------------------
class MovieAggregate(BaseModel):
    id: str
    average_rating: Decimal = ZERO_AVERAGE
    vote_count: int = 0

    # 읽어 온 행의 버전. None 이면 아직 저장되지 않은 집계 (저장 시 INSERT)
    # - 저장소는 이 값으로 "읽은 뒤 아무도 갱신하지 않았는지" 확인한다
    version: Optional[int] = None

    class Config:
        from_attributes = True
        frozen = True

    @classmethod
    def zero(cls, movie_id: str) -> "MovieAggregate":
        # 리뷰가 하나도 없는 영화의 집계 (0.00, 0)
        return cls(id=movie_id, average_rating=ZERO_AVERAGE, vote_count=0)

    @property
    def is_rated(self) -> bool:
        return self.vote_count > 0


# ------------------------------------------------------------
# Review: 리뷰 한 건 (movie_id/user_id는 생성 후 변경 불가)
# ------------------------------------------------------------
class Review(BaseModel):
    id: Optional[str] = None
    movie_id: str
    user_id: str
    rating: Decimal
    description: str

    class Config:
        from_attributes = True
        frozen = True


# ------------------------------------------------------------
# MovieSummary: 추천/조회 결과로 내보내는 영화 요약
#  - frozen 이므로 hash 가능 → set 으로 중복 제거
# ------------------------------------------------------------
class MovieSummary(BaseModel):
    id: str
    average_rating: Decimal
    vote_count: int

    class Config:
        from_attributes = True
        frozen = True

    @classmethod
    def of(cls, aggregate: MovieAggregate) -> "MovieSummary":
        return cls(id=aggregate.id, average_rating=aggregate.average_rating, vote_count=aggregate.vote_count)


def to_decimal(value) -> Decimal:
    # float는 이진 오차를 피하려고 문자열을 거쳐 변환 (7.3 → Decimal("7.3"))
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"rating {value!r} is not a number") from None


def validate_rating(value) -> Decimal:
    """
    리뷰 평점을 검증하고 소수 첫째 자리 Decimal로 정규화합니다.

    - 0.0 ~ 10.0 범위
    - 소수 둘째 자리 이하가 있으면(예: 7.25) InvalidInputError
    """
    rating = to_decimal(value)
    if not rating.is_finite():
        raise InvalidInputError(f"rating {value!r} is not a finite number")
    if rating < MIN_RATING or rating > MAX_RATING:
        raise InvalidInputError(f"rating {rating} must be between {MIN_RATING} and {MAX_RATING}")
    normalized = rating.quantize(RATING_STEP)
    if normalized != rating:
        raise InvalidInputError(f"rating {rating} must have at most one fractional digit")
    return normalized


def round2_ceiling(numerator: Decimal, denominator: int) -> Decimal:
    """
    numerator / denominator 를 소수 둘째 자리에서 올림(+무한대 방향)합니다.

    나눗셈 자체도 ROUND_CEILING 문맥에서 수행하므로, 28자리에서 잘린
    중간값이 정확한 몫보다 작아지는 일이 없다.
    """
    with localcontext() as ctx:
        ctx.rounding = ROUND_CEILING
        quotient = Decimal(numerator) / Decimal(denominator)
        return quotient.quantize(AVERAGE_STEP, rounding=ROUND_CEILING)


def clamp_rating(value: Decimal) -> Decimal:
    # 추천 평점 밴드를 [0, 10] 안으로 자름
    return max(MIN_RATING, min(MAX_RATING, value))


# ------------------------------------------------------------
# ReviewResult: 리뷰 작성/수정 결과 (저장된 리뷰 + 갱신된 영화 요약)
# ------------------------------------------------------------
class ReviewResult(BaseModel):
    review: Review
    movie: MovieSummary

    class Config:
        frozen = True
