from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


def rating_field():
    # 평점: 0.0 ~ 10.0, 정수부 2자리 + 소수 1자리
    return Field(..., ge=0, le=10, max_digits=3, decimal_places=1)


# ------------------------------------------------------------
# MovieOut: 클라이언트로 내보낼 "영화 요약" 응답 스키마
# ------------------------------------------------------------
class MovieOut(BaseModel):
    id: str
    average_rating: Decimal
    vote_count: int

    class Config:
        # MovieSummary/ORM 객체로부터 필드 매핑 허용
        from_attributes = True


# ------------------------------------------------------------
# ReviewIn: 리뷰 작성 요청 바디
# ------------------------------------------------------------
class ReviewIn(BaseModel):
    movie_id: str = Field(..., min_length=1, max_length=64)
    user_id: str = Field(..., min_length=1, max_length=64)
    rating: Decimal = rating_field()
    description: str = Field(..., min_length=1)


# ------------------------------------------------------------
# ReviewEdit: 리뷰 수정 요청 바디 (평점/설명만 변경 가능)
#  - user_id 를 주면 작성자 본인의 리뷰인지 확인
# ------------------------------------------------------------
class ReviewEdit(BaseModel):
    rating: Decimal = rating_field()
    description: str = Field(..., min_length=1)
    user_id: Optional[str] = None


# ------------------------------------------------------------
# ReviewOut: 리뷰 응답
# ------------------------------------------------------------
class ReviewOut(BaseModel):
    id: str
    movie_id: str
    user_id: str
    rating: Decimal
    description: str

    class Config:
        from_attributes = True


# ------------------------------------------------------------
# ReviewResultOut: 리뷰 작성/수정 결과 (리뷰 + 갱신된 영화 요약)
# ------------------------------------------------------------
class ReviewResultOut(BaseModel):
    review: ReviewOut
    movie: MovieOut

    class Config:
        from_attributes = True
